class WarrantyImportError(Exception):
    """Base exception for all import failures."""


class InputFileError(WarrantyImportError):
    """Raised when the uploaded file cannot be read or has the wrong shape."""


class CrmApiError(WarrantyImportError):
    """Raised when an HTTP exchange with the CRM fails."""

    def __init__(self, message: str, *, status_code: int | None = None, transient: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        # Set for transport failures (connect, read timeout) that never reached a response.
        self.transient = transient

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return self.transient
        return self.status_code == 429 or self.status_code >= 500


class CrmAuthError(CrmApiError):
    """Raised when a bearer credential cannot be obtained."""


class AccountLookupError(WarrantyImportError):
    """Raised when partner names cannot be resolved against the account registry."""


class BulkJobError(WarrantyImportError):
    """Raised when a bulk job lifecycle call fails."""

    def __init__(self, message: str, *, job_id: str = "") -> None:
        super().__init__(message)
        self.job_id = job_id


class PollingTimeoutError(WarrantyImportError):
    """Raised when a bulk job does not reach a terminal state in time."""

    def __init__(self, job_id: str, *, elapsed_seconds: float, poll_count: int, timeout_seconds: float) -> None:
        super().__init__(
            f"bulk job {job_id} polling timeout after {timeout_seconds:g} seconds "
            f"({poll_count} polls, {elapsed_seconds:.2f}s elapsed)"
        )
        self.job_id = job_id
        self.elapsed_seconds = elapsed_seconds
        self.poll_count = poll_count
        self.timeout_seconds = timeout_seconds


class ImportRunError(WarrantyImportError):
    """Fatal run-level failure. The triggering exception is chained as __cause__."""

    def __init__(self, message: str, *, import_id: str, elapsed_seconds: float) -> None:
        super().__init__(message)
        self.import_id = import_id
        self.elapsed_seconds = elapsed_seconds
