"""Background removal on top of rembg segmentation models.

The model only has to produce a foreground mask; the mask is applied as the
alpha channel of the (possibly downscaled) input. A failing primary model gets
exactly one retry against the fallback model.
"""

import asyncio
import logging
from typing import Dict, Optional

from PIL import Image

from common.config import FALLBACK_MODEL, MAX_IMAGE_DIMENSION, PRIMARY_MODEL
from common.errors import InferenceError, ModelUnavailable

# Model runtimes are heavy; a missing install surfaces as ModelUnavailable.
try:
    import rembg
except ImportError:
    rembg = None

logger = logging.getLogger(__name__)


def resize_to_fit(image: Image.Image, max_dimension: int = MAX_IMAGE_DIMENSION) -> Image.Image:
    """Downscale so the longest side is at most ``max_dimension``, keeping aspect ratio."""
    width, height = image.size
    if width <= max_dimension and height <= max_dimension:
        return image

    if width > height:
        height = round(height * max_dimension / width)
        width = max_dimension
    else:
        width = round(width * max_dimension / height)
        height = max_dimension
    return image.resize((max(width, 1), max(height, 1)), Image.Resampling.LANCZOS)


def validate_mask(result, size) -> Image.Image:
    """Check the model output is a single-channel mask covering the whole input."""
    if not isinstance(result, Image.Image):
        raise InferenceError(f"unsupported result shape: expected a mask image, got {type(result).__name__}")
    if result.mode != "L":
        raise InferenceError(f"unsupported result shape: expected an 'L' mask, got mode {result.mode}")
    if result.size != tuple(size):
        raise InferenceError(f"unsupported result shape: mask is {result.size}, image is {tuple(size)}")
    return result


class BackgroundRemover:
    def __init__(
        self,
        primary_model: str = PRIMARY_MODEL,
        fallback_model: Optional[str] = FALLBACK_MODEL,
        max_dimension: int = MAX_IMAGE_DIMENSION,
    ):
        self.primary_model = primary_model
        self.fallback_model = fallback_model
        self.max_dimension = max_dimension
        self._sessions: Dict[str, object] = {}

    def _session(self, model_name: str):
        if model_name not in self._sessions:
            if rembg is None:
                raise ModelUnavailable("rembg library is not installed.")
            logger.info("Loading background removal model %s", model_name)
            try:
                self._sessions[model_name] = rembg.new_session(model_name)
            except Exception as e:
                raise ModelUnavailable(f"Could not load model {model_name}: {e}") from e
        return self._sessions[model_name]

    def predict_mask(self, model_name: str, image: Image.Image):
        session = self._session(model_name)
        try:
            return rembg.remove(image, session=session, only_mask=True)
        except Exception as e:
            raise InferenceError(f"Model {model_name} failed: {e}") from e

    def _run(self, model_name: str, image: Image.Image) -> Image.Image:
        prepared = resize_to_fit(image.convert("RGB"), self.max_dimension)
        if prepared.size != image.size:
            logger.info("Resized %sx%s input to %sx%s", *image.size, *prepared.size)

        mask = validate_mask(self.predict_mask(model_name, prepared), prepared.size)
        result = prepared.convert("RGBA")
        result.putalpha(mask)
        return result

    async def remove_background(self, image: Image.Image) -> Image.Image:
        """Return ``image`` as RGBA with the background made transparent.

        Raises:
            ModelUnavailable: if neither model could be loaded
            InferenceError: if inference failed on both models
        """
        try:
            return await asyncio.to_thread(self._run, self.primary_model, image)
        except (ModelUnavailable, InferenceError) as error:
            if not self.fallback_model:
                raise
            logger.warning("Model %s failed (%s), trying fallback %s", self.primary_model, error, self.fallback_model)
            try:
                return await asyncio.to_thread(self._run, self.fallback_model, image)
            except (ModelUnavailable, InferenceError) as fallback_error:
                logger.error("Fallback model %s also failed: %s", self.fallback_model, fallback_error)
                raise error
