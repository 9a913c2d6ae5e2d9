from collections.abc import Callable
from dataclasses import dataclass
import logging
import time
from typing import Any, Protocol

from warranty_import.errors import BulkJobError, CrmApiError, PollingTimeoutError, WarrantyImportError
from warranty_import.retry import RetryExhaustedError, run_with_retries
from warranty_import.schemas import BulkOutcome, JobSnapshot


logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 5.0
POLL_TIMEOUT_SECONDS = 600.0


class BulkIngestApi(Protocol):
    def create_job(self, operation: str, object_name: str) -> str: ...

    def upload_job_data(self, job_id: str, payload: bytes) -> None: ...

    def close_job(self, job_id: str) -> None: ...

    def get_job_status(self, job_id: str) -> dict[str, Any]: ...

    def get_failed_results(self, job_id: str) -> str: ...

    def get_successful_results(self, job_id: str) -> str: ...


@dataclass
class PollProgress:
    started_at: float
    poll_count: int = 0
    elapsed_seconds: float = 0.0


def snapshot_from_status(job_id: str, status: dict[str, Any]) -> JobSnapshot:
    return JobSnapshot(
        job_id=job_id,
        state=str(status.get("state", "")),
        records_processed=int(status.get("numberRecordsProcessed") or 0),
        records_failed=int(status.get("numberRecordsFailed") or 0),
    )


class BulkJobOrchestrator:
    def __init__(
        self,
        api: BulkIngestApi,
        *,
        operation: str = "insert",
        object_name: str = "Opportunity",
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        poll_timeout_seconds: float = POLL_TIMEOUT_SECONDS,
        read_retries: int = 2,
        retry_backoff_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api = api
        self.operation = operation
        self.object_name = object_name
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_timeout_seconds = poll_timeout_seconds
        self.read_retries = read_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.clock = clock
        self.sleep = sleep

    def create_job(self) -> str:
        started = self.clock()
        logger.info("creating bulk job", extra={"operation": self.operation, "object": self.object_name})
        try:
            job_id = self.api.create_job(self.operation, self.object_name)
        except WarrantyImportError as exc:
            self._log_failure("failed to create bulk job", "", started, exc)
            raise BulkJobError(f"failed to create bulk job: {exc}") from exc
        logger.info("bulk job created", extra={"job_id": job_id, "duration_seconds": self._since(started)})
        return job_id

    def upload_data(self, job_id: str, payload: bytes) -> None:
        started = self.clock()
        logger.info("uploading data to bulk job", extra={"job_id": job_id, "data_size_bytes": len(payload)})
        try:
            self.api.upload_job_data(job_id, payload)
        except WarrantyImportError as exc:
            self._log_failure("failed to upload data to bulk job", job_id, started, exc)
            raise BulkJobError(f"failed to upload data to bulk job {job_id}: {exc}", job_id=job_id) from exc
        logger.info("bulk job data uploaded", extra={"job_id": job_id, "duration_seconds": self._since(started)})

    def close_job(self, job_id: str) -> None:
        started = self.clock()
        logger.info("closing bulk job", extra={"job_id": job_id})
        try:
            self.api.close_job(job_id)
        except WarrantyImportError as exc:
            self._log_failure("failed to close bulk job", job_id, started, exc)
            raise BulkJobError(f"failed to close bulk job {job_id}: {exc}", job_id=job_id) from exc
        logger.info("bulk job closed", extra={"job_id": job_id, "duration_seconds": self._since(started)})

    def read_status(self, job_id: str) -> JobSnapshot:
        def log_attempt(attempt: int, exc: Exception) -> None:
            logger.warning("bulk job status read failed", extra={"job_id": job_id, "attempt": attempt, "error": str(exc)})

        try:
            status = run_with_retries(
                lambda: self.api.get_job_status(job_id),
                max_retries=self.read_retries,
                backoff_seconds=self.retry_backoff_seconds,
                on_attempt_failure=log_attempt,
                should_retry=lambda exc: isinstance(exc, CrmApiError) and exc.retryable,
                sleep=self.sleep,
            )
        except RetryExhaustedError as exc:
            raise BulkJobError(f"failed to read status of bulk job {job_id}: {exc}", job_id=job_id) from exc
        return snapshot_from_status(job_id, status)

    def poll_step(self, job_id: str, progress: PollProgress) -> JobSnapshot | None:
        progress.elapsed_seconds = self.clock() - progress.started_at
        if progress.elapsed_seconds > self.poll_timeout_seconds:
            raise PollingTimeoutError(
                job_id,
                elapsed_seconds=progress.elapsed_seconds,
                poll_count=progress.poll_count,
                timeout_seconds=self.poll_timeout_seconds,
            )

        progress.poll_count += 1
        snapshot = self.read_status(job_id)
        logger.debug(
            "bulk job poll",
            extra={
                "job_id": job_id,
                "poll_count": progress.poll_count,
                "state": snapshot.state,
                "elapsed_seconds": round(progress.elapsed_seconds, 2),
            },
        )
        return snapshot if snapshot.is_terminal else None

    def poll_job_completion(self, job_id: str) -> JobSnapshot:
        progress = PollProgress(started_at=self.clock())
        logger.info(
            "starting bulk job polling",
            extra={
                "job_id": job_id,
                "poll_interval_seconds": self.poll_interval_seconds,
                "timeout_seconds": self.poll_timeout_seconds,
            },
        )
        try:
            while True:
                snapshot = self.poll_step(job_id, progress)
                if snapshot is not None:
                    break
                self.sleep(self.poll_interval_seconds)
        except (BulkJobError, PollingTimeoutError) as exc:
            self._log_failure("bulk job polling failed", job_id, progress.started_at, exc)
            raise

        logger.info(
            "bulk job completed",
            extra={
                "job_id": job_id,
                "state": snapshot.state,
                "poll_count": progress.poll_count,
                "duration_seconds": self._since(progress.started_at),
                "records_processed": snapshot.records_processed,
                "records_failed": snapshot.records_failed,
            },
        )
        return snapshot

    def get_failed_results(self, job_id: str) -> str | None:
        started = self.clock()
        try:
            content = self.api.get_failed_results(job_id)
        except WarrantyImportError as exc:
            self._log_failure("failed to retrieve failed results", job_id, started, exc)
            return None

        if not content.strip():
            logger.info("no failed results to retrieve", extra={"job_id": job_id})
            return None

        logger.info(
            "failed results retrieved",
            extra={"job_id": job_id, "csv_size_bytes": len(content), "duration_seconds": self._since(started)},
        )
        return content

    def get_successful_results(self, job_id: str) -> str | None:
        started = self.clock()
        try:
            content = self.api.get_successful_results(job_id)
        except WarrantyImportError as exc:
            self._log_failure("failed to retrieve successful results", job_id, started, exc)
            return None
        logger.info(
            "successful results retrieved",
            extra={"job_id": job_id, "csv_size_bytes": len(content), "duration_seconds": self._since(started)},
        )
        return content

    def run(self, payload: bytes) -> BulkOutcome:
        job_id = self.create_job()
        self.upload_data(job_id, payload)
        self.close_job(job_id)
        snapshot = self.poll_job_completion(job_id)

        if snapshot.state != "JobComplete":
            logger.warning("bulk job ended without completing", extra={"job_id": job_id, "state": snapshot.state})

        failed_results = None
        if snapshot.records_failed > 0:
            failed_results = self.get_failed_results(job_id)

        return BulkOutcome(
            job_id=job_id,
            state=snapshot.state,
            success_count=snapshot.records_processed - snapshot.records_failed,
            error_count=snapshot.records_failed,
            failed_results=failed_results,
        )

    def _since(self, started: float) -> float:
        return round(self.clock() - started, 2)

    def _log_failure(self, message: str, job_id: str, started: float, exc: Exception) -> None:
        logger.error(message, extra={"job_id": job_id, "error": str(exc), "duration_seconds": self._since(started)})
