import csv
from collections.abc import Sequence
import logging
from pathlib import Path
import shutil

from warranty_import.schemas import FIELD_NAMES, InvalidRecord


logger = logging.getLogger(__name__)

ERROR_REASON_COLUMN = "error_reason"


def validation_report_path(work_dir: Path, import_id: str) -> Path:
    return work_dir / f"VALIDATION_ERRORS_{import_id}.csv"


def bulk_report_path(work_dir: Path, import_id: str) -> Path:
    return work_dir / f"CRM_ERRORS_{import_id}.csv"


def write_validation_report(path: Path, invalid_records: Sequence[InvalidRecord]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as outfile:
        writer = csv.writer(outfile, lineterminator="\n")
        writer.writerow((*FIELD_NAMES, ERROR_REASON_COLUMN))
        for invalid in invalid_records:
            writer.writerow((*(invalid.record.get(name, "") for name in FIELD_NAMES), invalid.reason))
    logger.info("validation errors exported", extra={"output_path": str(path), "error_count": len(invalid_records)})


def write_bulk_report(path: Path, failed_results: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Written byte-for-byte as returned by the CRM.
    with path.open("w", encoding="utf-8", newline="") as outfile:
        outfile.write(failed_results)
    logger.info("crm errors exported", extra={"output_path": str(path)})


def archive_source_file(source: Path, archive_dir: Path, import_id: str) -> Path | None:
    archive_path = archive_dir / f"{import_id}_{source.name}"
    try:
        archive_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, archive_path)
    except OSError as exc:
        logger.warning("failed to archive source file", extra={"archive_path": str(archive_path), "error": str(exc)})
        return None
    logger.info("source file archived", extra={"archive_path": str(archive_path)})
    return archive_path
