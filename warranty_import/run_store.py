import json

from sqlalchemy import select
from sqlalchemy.orm import Session

from warranty_import.db_models import ImportRun, RejectedRecord, StepRun, utc_now
from warranty_import.schemas import ImportResult, InvalidRecord


def get_run_by_import_id(db: Session, import_id: str) -> ImportRun | None:
    stmt = select(ImportRun).where(ImportRun.import_id == import_id)
    return db.execute(stmt).scalar_one_or_none()


def find_succeeded_run_by_checksum(db: Session, checksum: str) -> ImportRun | None:
    stmt = (
        select(ImportRun)
        .where(ImportRun.source_checksum == checksum, ImportRun.status == "succeeded")
        .order_by(ImportRun.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def create_run(db: Session, *, import_id: str, source_name: str, source_checksum: str | None) -> ImportRun:
    run = ImportRun(
        import_id=import_id,
        source_name=source_name,
        source_checksum=source_checksum,
        status="running",
        started_at=utc_now(),
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def mark_run_succeeded(db: Session, run: ImportRun, result: ImportResult) -> None:
    run.status = "succeeded"
    run.total_records = result.total_lines
    run.valid_records = result.valid_records
    run.invalid_records = result.invalid_records
    run.unmatched_records = result.unmatched_records
    run.job_id = result.job_id
    run.job_state = result.job_state
    run.success_count = result.success_count
    run.error_count = result.error_count
    run.validation_report_path = result.validation_report_path
    run.bulk_report_path = result.bulk_report_path
    run.duration_seconds = result.duration_seconds
    run.completed_at = utc_now()
    run.error = None
    db.commit()


def mark_run_failed(
    db: Session,
    run: ImportRun,
    *,
    error: str,
    duration_seconds: float,
    total_records: int = 0,
    valid_records: int = 0,
    invalid_records: int = 0,
    job_id: str = "",
) -> None:
    run.status = "failed"
    run.error = error
    run.duration_seconds = duration_seconds
    run.total_records = total_records
    run.valid_records = valid_records
    run.invalid_records = invalid_records
    run.job_id = job_id
    run.completed_at = utc_now()
    db.commit()


def create_step(db: Session, *, run_id: int, step_name: str) -> StepRun:
    step = StepRun(run_id=run_id, step_name=step_name, status="started", started_at=utc_now())
    db.add(step)
    db.commit()
    db.refresh(step)
    return step


def _close_step(db: Session, step: StepRun, *, status: str, error: str | None, record_count: int | None) -> None:
    completed_at = utc_now()
    step.status = status
    step.completed_at = completed_at
    step.duration_ms = round((completed_at - step.started_at).total_seconds() * 1000, 3)
    step.record_count = record_count
    step.error = error
    db.commit()


def finish_step_success(db: Session, step: StepRun, *, record_count: int | None = None) -> None:
    _close_step(db, step, status="succeeded", error=None, record_count=record_count)


def finish_step_failure(db: Session, step: StepRun, error: str) -> None:
    _close_step(db, step, status="failed", error=error, record_count=None)


def store_rejected_records(db: Session, *, run_id: int, invalid_records: list[InvalidRecord]) -> None:
    if not invalid_records:
        return
    db.add_all(
        RejectedRecord(
            run_id=run_id,
            record_index=invalid.record_index,
            raw_record=json.dumps(invalid.record, ensure_ascii=False, sort_keys=True),
            reason=invalid.reason,
        )
        for invalid in invalid_records
    )
    db.commit()
