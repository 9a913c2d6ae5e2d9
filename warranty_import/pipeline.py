from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
import hashlib
import logging
from pathlib import Path
import time
from typing import TypeVar
import uuid

import httpx
from sqlalchemy.orm import Session, sessionmaker

from warranty_import.auth import TOKEN_PATH, TokenProvider, build_jwt_assertion
from warranty_import.bulk_job import BulkJobOrchestrator
from warranty_import.config import Settings
from warranty_import.crm_client import CrmClient
from warranty_import.csv_input import read_sales_file
from warranty_import.db_models import ImportRun
from warranty_import.errors import ImportRunError
from warranty_import.logging_setup import import_context
from warranty_import.reconciliation import AccountReconciler
from warranty_import.reports import (
    archive_source_file,
    bulk_report_path,
    validation_report_path,
    write_bulk_report,
    write_validation_report,
)
from warranty_import.run_store import (
    create_run,
    create_step,
    finish_step_failure,
    finish_step_success,
    mark_run_failed,
    mark_run_succeeded,
    store_rejected_records,
)
from warranty_import.schemas import ImportResult, RawRecord
from warranty_import.transform import transform_records
from warranty_import.validation import validate_records


logger = logging.getLogger(__name__)
T = TypeVar("T")


def new_import_id() -> str:
    return f"{datetime.now(UTC).strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:12]}"


def file_checksum(path: Path) -> str | None:
    try:
        return hashlib.sha256(path.read_bytes()).hexdigest()
    except OSError:
        return None


@dataclass
class _RunProgress:
    total_records: int = 0
    valid_records: int = 0
    invalid_records: int = 0
    job_id: str = ""


class ImportPipeline:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        reconciler: AccountReconciler,
        bulk_jobs: BulkJobOrchestrator,
        clock: Callable[[], float] = time.monotonic,
        http_clients: Sequence[httpx.Client] = (),
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.reconciler = reconciler
        self.bulk_jobs = bulk_jobs
        self.clock = clock
        self.http_clients = list(http_clients)

    def close(self) -> None:
        for client in self.http_clients:
            client.close()

    def run_file(self, input_path: Path, *, import_id: str | None = None) -> ImportResult:
        return self._execute(
            import_id or new_import_id(),
            lambda: read_sales_file(input_path),
            source_name=input_path.name,
            source_checksum=file_checksum(input_path),
            source_path=input_path,
        )

    def run(self, rows: Sequence[RawRecord], *, import_id: str | None = None) -> ImportResult:
        return self._execute(import_id or new_import_id(), lambda: list(rows))

    def _execute(
        self,
        import_id: str,
        load_rows: Callable[[], list[RawRecord]],
        *,
        source_name: str = "",
        source_checksum: str | None = None,
        source_path: Path | None = None,
    ) -> ImportResult:
        with import_context(import_id), self.session_factory() as db:
            started = self.clock()
            run = create_run(db, import_id=import_id, source_name=source_name, source_checksum=source_checksum)
            logger.info("starting sales import", extra={"source_name": source_name})
            progress = _RunProgress()

            try:
                result = self._import(db, run, load_rows, started, progress, source_path)
            except Exception as exc:
                elapsed = round(self.clock() - started, 2)
                mark_run_failed(
                    db,
                    run,
                    error=str(exc),
                    duration_seconds=elapsed,
                    total_records=progress.total_records,
                    valid_records=progress.valid_records,
                    invalid_records=progress.invalid_records,
                    job_id=getattr(exc, "job_id", "") or progress.job_id,
                )
                logger.exception("sales import failed", extra={"duration_seconds": elapsed})
                raise ImportRunError(
                    f"import {import_id} failed: {exc}", import_id=import_id, elapsed_seconds=elapsed
                ) from exc

            mark_run_succeeded(db, run, result)
            logger.info(
                "sales import completed",
                extra={
                    "total_lines": result.total_lines,
                    "validation_valid": result.valid_records,
                    "validation_errors": result.invalid_records,
                    "crm_success": result.success_count,
                    "crm_errors": result.error_count,
                    "duration_seconds": result.duration_seconds,
                },
            )
            return result

    def _import(
        self,
        db: Session,
        run: ImportRun,
        load_rows: Callable[[], list[RawRecord]],
        started: float,
        progress: _RunProgress,
        source_path: Path | None,
    ) -> ImportResult:
        import_id = run.import_id
        rows = self._run_step(db, run, "parse", load_rows, count=len)
        progress.total_records = len(rows)

        valid, invalid = self._run_step(db, run, "validate", lambda: validate_records(rows), count=lambda r: len(r[0]))
        progress.valid_records = len(valid)
        progress.invalid_records = len(invalid)
        store_rejected_records(db, run_id=run.id, invalid_records=invalid)

        work_dir = self._work_dir()
        validation_report: str | None = None
        if invalid:
            report = validation_report_path(work_dir, import_id)
            self._run_step(db, run, "export_validation_errors", lambda: write_validation_report(report, invalid))
            validation_report = str(report)

        if not valid:
            logger.warning(
                "no valid data to import",
                extra={"total_lines": len(rows), "validation_errors": len(invalid)},
            )
            return ImportResult(
                import_id=import_id,
                status="succeeded",
                total_lines=len(rows),
                valid_records=0,
                invalid_records=len(invalid),
                unmatched_records=0,
                job_id="",
                job_state=None,
                success_count=0,
                error_count=0,
                validation_report_path=validation_report,
                bulk_report_path=None,
                duration_seconds=round(self.clock() - started, 2),
            )

        enriched = self._run_step(db, run, "reconcile", lambda: self.reconciler.reconcile(valid), count=len)
        payload = self._run_step(db, run, "transform", lambda: transform_records(enriched), count=lambda _: len(enriched))
        outcome = self._run_step(db, run, "bulk_import", lambda: self.bulk_jobs.run(payload), count=lambda o: o.success_count)
        progress.job_id = outcome.job_id

        bulk_report: str | None = None
        if outcome.failed_results is not None:
            report = bulk_report_path(work_dir, import_id)
            self._run_step(db, run, "export_bulk_errors", lambda: write_bulk_report(report, outcome.failed_results))
            bulk_report = str(report)

        if source_path is not None:
            archive_dir = Path(self.settings.output_dir) / "archive" / datetime.now(UTC).strftime("%Y-%m")
            archive_source_file(source_path, archive_dir, import_id)

        return ImportResult(
            import_id=import_id,
            status="succeeded",
            total_lines=len(rows),
            valid_records=len(valid),
            invalid_records=len(invalid),
            unmatched_records=sum(1 for item in enriched if not item.is_matched),
            job_id=outcome.job_id,
            job_state=outcome.state,
            success_count=outcome.success_count,
            error_count=outcome.error_count,
            validation_report_path=validation_report,
            bulk_report_path=bulk_report,
            duration_seconds=round(self.clock() - started, 2),
        )

    def _run_step(
        self,
        db: Session,
        run: ImportRun,
        step_name: str,
        fn: Callable[[], T],
        *,
        count: Callable[[T], int] | None = None,
    ) -> T:
        # Persist each stage so durations and counts stay auditable per run.
        step = create_step(db, run_id=run.id, step_name=step_name)
        try:
            result = fn()
        except Exception as exc:
            finish_step_failure(db, step, str(exc))
            raise
        finish_step_success(db, step, record_count=count(result) if count else None)
        return result

    def _work_dir(self) -> Path:
        return Path(self.settings.output_dir) / "imports" / datetime.now(UTC).date().isoformat()


def build_pipeline(settings: Settings, session_factory: sessionmaker[Session]) -> ImportPipeline:
    auth_client = httpx.Client(timeout=settings.http_timeout_seconds)
    api_client = httpx.Client(base_url=settings.crm_instance_url, timeout=settings.http_timeout_seconds)

    token_provider = TokenProvider(
        auth_client,
        token_url=settings.crm_login_url.rstrip("/") + TOKEN_PATH,
        assertion_factory=lambda: build_jwt_assertion(
            client_id=settings.crm_client_id,
            username=settings.crm_username,
            audience=settings.crm_login_url,
            private_key_path=Path(settings.crm_private_key_path),
        ),
    )
    crm = CrmClient(api_client, token_provider, api_version=settings.crm_api_version)

    bulk_jobs = BulkJobOrchestrator(
        crm,
        operation=settings.bulk_operation,
        object_name=settings.bulk_object,
        poll_interval_seconds=settings.poll_interval_seconds,
        poll_timeout_seconds=settings.poll_timeout_seconds,
        read_retries=settings.poll_read_retries,
        retry_backoff_seconds=settings.retry_backoff_seconds,
    )
    return ImportPipeline(
        settings,
        session_factory,
        reconciler=AccountReconciler(crm.find_account_ids),
        bulk_jobs=bulk_jobs,
        http_clients=(auth_client, api_client),
    )
