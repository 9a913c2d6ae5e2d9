import logging
from pathlib import Path

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from warranty_import.config import Settings
from warranty_import.errors import ImportRunError
from warranty_import.pipeline import ImportPipeline, build_pipeline, file_checksum
from warranty_import.run_store import find_succeeded_run_by_checksum


logger = logging.getLogger(__name__)


def import_inbox(pipeline: ImportPipeline, settings: Settings, session_factory: sessionmaker[Session]) -> int:
    """Import every CSV waiting in the inbox. Returns the number of files imported."""
    inbox = Path(settings.input_dir)
    if not inbox.is_dir():
        logger.warning("inbox directory missing", extra={"input_dir": str(inbox)})
        return 0

    imported = 0
    for input_path in sorted(inbox.glob("*.csv")):
        checksum = file_checksum(input_path)
        if checksum is not None:
            with session_factory() as db:
                previous = find_succeeded_run_by_checksum(db, checksum)
            if previous is not None:
                logger.info(
                    "file already imported, skipping",
                    extra={"file_name": input_path.name, "previous_import_id": previous.import_id},
                )
                continue

        try:
            result = pipeline.run_file(input_path)
        except ImportRunError as exc:
            logger.error(
                "scheduled import failed",
                extra={"file_name": input_path.name, "failed_import_id": exc.import_id, "error": str(exc)},
            )
            continue

        imported += 1
        logger.info(
            "scheduled import completed",
            extra={"file_name": input_path.name, "completed_import_id": result.import_id, "job_id": result.job_id},
        )
    return imported


def _run_inbox_sweep(settings: Settings, session_factory: sessionmaker[Session]) -> None:
    pipeline = build_pipeline(settings, session_factory)
    try:
        import_inbox(pipeline, settings, session_factory)
    finally:
        pipeline.close()


def start_scheduler(settings: Settings, session_factory: sessionmaker[Session], *, run_now: bool = False) -> None:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        _run_inbox_sweep,
        "cron",
        args=[settings, session_factory],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id="daily_inbox_import",
        replace_existing=True,
    )

    logger.info(
        "scheduler started",
        extra={
            "input_dir": settings.input_dir,
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        _run_inbox_sweep(settings, session_factory)

    scheduler.start()
