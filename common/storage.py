import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Container, Iterable, List, Optional

from pydantic import ValidationError

from common.config import AZURE_CONN_STR, AZURE_CONTAINER, GCS_BUCKET, LOCAL_JOBS_DIR, STORAGE_BACKEND
from common.errors import StorageUnavailable
from common.job_schema import Job, JobStatus

# ------------------------------------------------------------------------------
# CONDITIONAL IMPORTS
# Only the SDK of the configured backend has to be importable; the stores
# raise StorageUnavailable when theirs is missing.
# ------------------------------------------------------------------------------

try:
    from google.cloud import storage as gcs
except ImportError:
    gcs = None

try:
    from azure.storage.blob import BlobServiceClient
except ImportError:
    BlobServiceClient = None

logger = logging.getLogger(__name__)

# One JSON document per job, keyed by id. Records carry no schema version.
JOBS_PREFIX = "jobs/"


def _record_name(job_id: str) -> str:
    return f"{JOBS_PREFIX}{job_id}.json"


def _is_safe_id(job_id: str) -> bool:
    return bool(job_id) and Path(job_id).name == job_id and not job_id.startswith(".")


def _dump(job: Job) -> str:
    return job.model_dump_json(indent=2)


def _parse(data, source: str) -> Optional[Job]:
    """Parse one stored record, skipping (and logging) records that no longer validate."""
    try:
        return Job.model_validate_json(data)
    except (ValidationError, UnicodeDecodeError) as e:
        logger.warning("Skipping unreadable job record %s: %s", source, e)
        return None


@contextmanager
def _storage_errors(action: str):
    """Re-raise any SDK failure inside the block as StorageUnavailable."""
    try:
        yield
    except StorageUnavailable:
        raise
    except Exception as e:
        raise StorageUnavailable(f"Could not {action}: {e}") from e


def sort_jobs(jobs: Iterable[Job]) -> List[Job]:
    """Order jobs by submission: batch timestamp, then position inside the batch."""
    return sorted(jobs, key=lambda j: j.sort_key)


class JobStore:
    """Durable job records. Every write is a whole-record upsert keyed by id."""

    def __init__(self) -> None:
        self._ready = False

    def init(self) -> None:
        """Open or create the underlying medium. Safe to call more than once."""
        self._open()
        self._ready = True

    def _ensure_ready(self) -> None:
        if not self._ready:
            self.init()

    def put(self, job: Job) -> None:
        self._ensure_ready()
        self._write(job.id, _dump(job))

    def get(self, job_id: str) -> Optional[Job]:
        if not _is_safe_id(job_id):
            return None
        self._ensure_ready()
        data = self._read(job_id)
        return _parse(data, job_id) if data is not None else None

    def get_all(self) -> List[Job]:
        self._ensure_ready()
        jobs = []
        for source, data in self._read_all():
            job = _parse(data, source)
            if job is not None:
                jobs.append(job)
        return jobs

    def clear(self) -> None:
        self._ensure_ready()
        self._delete_all()

    # Backend hooks
    def _open(self) -> None:
        raise NotImplementedError

    def _write(self, job_id: str, data: str) -> None:
        raise NotImplementedError

    def _read(self, job_id: str) -> Optional[bytes]:
        raise NotImplementedError

    def _read_all(self) -> Iterable[tuple]:
        raise NotImplementedError

    def _delete_all(self) -> None:
        raise NotImplementedError


# ------------------------------------------------------------------------------
# LOCAL FILESYSTEM
# Used when STORAGE_BACKEND="local". One file per job in LOCAL_JOBS_DIR.
# ------------------------------------------------------------------------------

class LocalJobStore(JobStore):
    def __init__(self, jobs_dir: Path = LOCAL_JOBS_DIR) -> None:
        super().__init__()
        self.jobs_dir = Path(jobs_dir)

    def _path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{job_id}.json"

    def _open(self) -> None:
        try:
            self.jobs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Could not create {self.jobs_dir}: {e}") from e

    def _write(self, job_id: str, data: str) -> None:
        path = self._path(job_id)
        tmp = path.with_name(path.name + ".tmp")
        try:
            tmp.write_text(data, encoding="utf-8")
            # Readers see either the old record or the new one, never half of one
            os.replace(tmp, path)
        except OSError as e:
            raise StorageUnavailable(f"Could not write {path}: {e}") from e

    def _read(self, job_id: str) -> Optional[bytes]:
        path = self._path(job_id)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageUnavailable(f"Could not read {path}: {e}") from e

    def _read_all(self):
        if not self.jobs_dir.exists():
            return []
        try:
            return [(str(p), p.read_bytes()) for p in self.jobs_dir.glob("*.json")]
        except OSError as e:
            raise StorageUnavailable(f"Could not read {self.jobs_dir}: {e}") from e

    def _delete_all(self) -> None:
        if not self.jobs_dir.exists():
            return
        try:
            for path in self.jobs_dir.glob("*.json*"):
                path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Could not clear {self.jobs_dir}: {e}") from e


# ------------------------------------------------------------------------------
# GOOGLE CLOUD STORAGE (GCS)
# Used when STORAGE_BACKEND="gcp". One object per job under jobs/.
# ------------------------------------------------------------------------------

class GCSJobStore(JobStore):
    def __init__(self, bucket_name: Optional[str] = GCS_BUCKET, client=None) -> None:
        super().__init__()
        if not bucket_name:
            raise ValueError("GCS_BUCKET is required for GCP backend")
        self.bucket_name = bucket_name
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not gcs:
                raise StorageUnavailable("google-cloud-storage library is not installed.")
            with _storage_errors("create GCS client"):
                self._client = gcs.Client()
        return self._client

    def _open(self) -> None:
        client = self._get_client()
        try:
            client.get_bucket(self.bucket_name)
        except Exception:
            # Missing or inaccessible; try creating it
            with _storage_errors(f"create bucket {self.bucket_name}"):
                client.create_bucket(self.bucket_name)

    def _write(self, job_id: str, data: str) -> None:
        with _storage_errors(f"upload job {job_id}"):
            blob = self._get_client().bucket(self.bucket_name).blob(_record_name(job_id))
            blob.upload_from_string(data, content_type="application/json")

    def _read(self, job_id: str) -> Optional[bytes]:
        with _storage_errors(f"download job {job_id}"):
            blob = self._get_client().bucket(self.bucket_name).blob(_record_name(job_id))
            if not blob.exists():
                return None
            return blob.download_as_bytes()

    def _read_all(self):
        with _storage_errors("list jobs"):
            blobs = self._get_client().list_blobs(self.bucket_name, prefix=JOBS_PREFIX)
            return [(blob.name, blob.download_as_bytes()) for blob in blobs]

    def _delete_all(self) -> None:
        with _storage_errors("delete jobs"):
            for blob in self._get_client().list_blobs(self.bucket_name, prefix=JOBS_PREFIX):
                blob.delete()


# ------------------------------------------------------------------------------
# AZURE BLOB STORAGE
# Used when STORAGE_BACKEND="azure". One blob per job under jobs/.
# ------------------------------------------------------------------------------

class AzureJobStore(JobStore):
    def __init__(
        self,
        container_name: Optional[str] = AZURE_CONTAINER,
        connection_string: Optional[str] = AZURE_CONN_STR,
        client=None,
    ) -> None:
        super().__init__()
        if not container_name:
            raise ValueError("AZURE_CONTAINER env var is required for Azure backend")
        self.container_name = container_name
        self.connection_string = connection_string
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not BlobServiceClient:
                raise StorageUnavailable("azure-storage-blob library is not installed.")
            if not self.connection_string:
                raise StorageUnavailable("AZURE_STORAGE_CONNECTION_STRING env var is missing.")
            with _storage_errors("create Azure client"):
                self._client = BlobServiceClient.from_connection_string(self.connection_string)
        return self._client

    def _container(self):
        return self._get_client().get_container_client(self.container_name)

    def _open(self) -> None:
        with _storage_errors(f"open container {self.container_name}"):
            container_client = self._container()
            if not container_client.exists():
                container_client.create_container()

    def _write(self, job_id: str, data: str) -> None:
        with _storage_errors(f"upload job {job_id}"):
            self._container().get_blob_client(_record_name(job_id)).upload_blob(data, overwrite=True)

    def _read(self, job_id: str) -> Optional[bytes]:
        with _storage_errors(f"download job {job_id}"):
            blob_client = self._container().get_blob_client(_record_name(job_id))
            if not blob_client.exists():
                return None
            return blob_client.download_blob().readall()

    def _read_all(self):
        with _storage_errors("list jobs"):
            container_client = self._container()
            records = []
            for props in container_client.list_blobs(name_starts_with=JOBS_PREFIX):
                data = container_client.get_blob_client(props.name).download_blob().readall()
                records.append((props.name, data))
            return records

    def _delete_all(self) -> None:
        with _storage_errors("delete jobs"):
            container_client = self._container()
            for props in container_client.list_blobs(name_starts_with=JOBS_PREFIX):
                container_client.delete_blob(props.name)


# ------------------------------------------------------------------------------
# PUBLIC API FUNCTIONS
# ------------------------------------------------------------------------------

def get_job_store(backend: str = STORAGE_BACKEND) -> JobStore:
    """Builds the store for the configured STORAGE_BACKEND."""
    if backend == "local":
        return LocalJobStore()
    elif backend == "gcp":
        return GCSJobStore()
    elif backend == "azure":
        return AzureJobStore()
    else:
        raise RuntimeError(f"Unsupported STORAGE_BACKEND: {backend}")


def get_next_pending_job(store: JobStore, exclude: Container[str] = ()) -> Optional[Job]:
    """Oldest job still waiting to be processed, skipping ids in ``exclude``."""
    for job in sort_jobs(store.get_all()):
        if job.status == JobStatus.PENDING and job.id not in exclude:
            return job
    return None
