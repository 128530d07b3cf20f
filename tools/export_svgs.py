# export_svgs.py

# --- Import necessary libraries ---
import os
import sys
from pathlib import Path

from common.config import configure_logging
from common.errors import NothingToExport
from common.export import archive_name, build_archive
from common.storage import get_job_store, sort_jobs

# --- Configuration (Environment Variables) ---
# Directory the archive is written to. Defaults to the current directory.
EXPORT_DIR = Path(os.getenv("EXPORT_DIR", "."))


# --- Main Export Function ---
def main(export_dir: Path = EXPORT_DIR) -> int:
    configure_logging()

    # 1. --- Read every job from the configured backend (local/gcp/azure) ---
    store = get_job_store()
    jobs = sort_jobs(store.get_all())

    # 2. --- Pack the SVG of each completed job into one zip ---
    try:
        archive = build_archive(jobs)
    except NothingToExport as e:
        print(f"Nothing exported: {e}", file=sys.stderr)
        return 1

    # 3. --- Write the archive next to the other exports ---
    export_dir.mkdir(parents=True, exist_ok=True)
    dest = export_dir / archive_name()
    dest.write_bytes(archive)
    print(f"Wrote {dest}")
    return 0


# Standard Python entry point.
if __name__ == "__main__":
    sys.exit(main())
