import logging
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

# Storage mode: local / gcp / azure
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")

LOCAL_JOBS_DIR = Path(os.getenv("LOCAL_JOBS_DIR", str(BASE_DIR / "data" / "jobs")))

GCS_BUCKET = os.getenv("GCS_BUCKET", None)
AZURE_CONN_STR = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
AZURE_CONTAINER = os.getenv("AZURE_CONTAINER")

# Region tracing. Pixels with alpha above the threshold count as foreground;
# seeds are sampled every SAMPLE_STRIDE pixels in both axes.
ALPHA_THRESHOLD = int(os.getenv("ALPHA_THRESHOLD", "128"))
SAMPLE_STRIDE = int(os.getenv("SAMPLE_STRIDE", "4"))
MAX_REGION_PIXELS = int(os.getenv("MAX_REGION_PIXELS", "100"))
MIN_REGION_PIXELS = int(os.getenv("MIN_REGION_PIXELS", "10"))

# Background removal
MAX_IMAGE_DIMENSION = int(os.getenv("MAX_IMAGE_DIMENSION", "1024"))
PRIMARY_MODEL = os.getenv("PRIMARY_MODEL", "bria-rmbg")
FALLBACK_MODEL = os.getenv("FALLBACK_MODEL", "u2net_human_seg")

POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "2"))  # seconds

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
