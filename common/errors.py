class PipelineError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class StorageUnavailable(PipelineError):
    """The job store medium could not be opened, read or written."""


class DecodeError(PipelineError):
    """The input could not be decoded as a raster with an alpha channel."""


class ModelUnavailable(PipelineError):
    """The background removal model could not be loaded."""


class InferenceError(PipelineError):
    """The background removal model failed or returned an unusable result."""


class NothingToExport(PipelineError):
    """No completed job carries a vector document."""


class InvalidTransition(PipelineError):
    """A job was asked to move to a state its current state does not allow."""
