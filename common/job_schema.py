import base64
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePath
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer, model_validator

from common.errors import InvalidTransition
from vectorizer.svg import VectorDocument

# Checkpoints a job passes through while PROCESSING.
PROGRESS_STARTED = 10
PROGRESS_LOADED = 30
PROGRESS_BACKGROUND_REMOVED = 70
PROGRESS_DONE = 100


def _b64decode(value):
    if isinstance(value, str):
        return base64.b64decode(value)
    return value


# Raw bytes in memory, base64 text in JSON records.
Payload = Annotated[
    bytes,
    BeforeValidator(_b64decode),
    PlainSerializer(lambda v: base64.b64encode(v).decode("ascii"), return_type=str, when_used="json"),
]


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class SourceAsset(BaseModel):
    name: str
    size: int
    content: Payload

    @classmethod
    def from_bytes(cls, name: str, content: bytes) -> "SourceAsset":
        return cls(name=name, size=len(content), content=content)

    @property
    def stem(self) -> str:
        """Filename up to the first dot, e.g. ``cat.final.png`` -> ``cat``."""
        return PurePath(self.name).name.split(".")[0] or "image"


class Job(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_asset: SourceAsset
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    background_removed_asset: Optional[Payload] = None
    vector_document: Optional[VectorDocument] = None
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    position: int = 0  # index inside the submitted batch

    @model_validator(mode="after")
    def _check_invariants(self) -> "Job":
        if (self.failure_reason is not None) != (self.status == JobStatus.FAILED):
            raise ValueError("failure_reason must be set exactly when status is FAILED")
        if (self.progress == PROGRESS_DONE) != (self.status == JobStatus.COMPLETED):
            raise ValueError("progress must be 100 exactly when status is COMPLETED")
        if self.vector_document is not None and (
            self.status != JobStatus.COMPLETED or self.background_removed_asset is None
        ):
            raise ValueError("vector_document requires a COMPLETED job with a background-removed asset")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def sort_key(self) -> tuple:
        return (self.created_at, self.position)

    def _require(self, *statuses: JobStatus) -> None:
        if self.status not in statuses:
            raise InvalidTransition(f"job {self.id} is {self.status.value}, expected one of "
                                    f"{', '.join(s.value for s in statuses)}")

    def start(self) -> None:
        self._require(JobStatus.PENDING)
        self.status = JobStatus.PROCESSING
        self.progress = PROGRESS_STARTED

    def advance(self, progress: int) -> None:
        self._require(JobStatus.PROCESSING)
        if not self.progress <= progress < PROGRESS_DONE:
            raise InvalidTransition(f"job {self.id} cannot move progress from {self.progress} to {progress}")
        self.progress = progress

    def complete(self, document: VectorDocument) -> None:
        self._require(JobStatus.PROCESSING)
        if self.background_removed_asset is None:
            raise InvalidTransition(f"job {self.id} has no background-removed asset")
        self.vector_document = document
        self.status = JobStatus.COMPLETED
        self.progress = PROGRESS_DONE

    def fail(self, reason: str) -> None:
        self._require(JobStatus.PROCESSING)
        self.vector_document = None
        self.status = JobStatus.FAILED
        self.progress = 0
        self.failure_reason = reason or "Unknown error"

    def reset(self) -> None:
        """Put an interrupted job back in the queue, dropping partial results."""
        self._require(JobStatus.PROCESSING)
        self.status = JobStatus.PENDING
        self.progress = 0
        self.background_removed_asset = None
        self.vector_document = None


class JobSummary(BaseModel):
    """Job without its binary payloads, as returned by the API."""

    id: str
    name: str
    size: int
    status: JobStatus
    progress: int
    failure_reason: Optional[str] = None
    has_background_removed: bool = False
    has_svg: bool = False
    created_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobSummary":
        return cls(
            id=job.id,
            name=job.source_asset.name,
            size=job.source_asset.size,
            status=job.status,
            progress=job.progress,
            failure_reason=job.failure_reason,
            has_background_removed=job.background_removed_asset is not None,
            has_svg=job.vector_document is not None,
            created_at=job.created_at,
        )


class ProcessingStats(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @classmethod
    def from_jobs(cls, jobs) -> "ProcessingStats":
        stats = cls(total=len(jobs))
        for job in jobs:
            name = job.status.value.lower()
            setattr(stats, name, getattr(stats, name) + 1)
        return stats
