from collections.abc import Callable, Generator
import csv
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.orm import Session, sessionmaker

from warranty_import.bulk_job import BulkJobOrchestrator
from warranty_import.config import Settings
from warranty_import.database import build_session_factory
from warranty_import.pipeline import ImportPipeline
from warranty_import.reconciliation import AccountReconciler
from warranty_import.schemas import FIELD_NAMES, RawRecord


BASE_ROW: RawRecord = {
    "partner_name": "Boulanger Lyon",
    "customer_email": "jeanne.martin@mail-client.fr",
    "product_name": "Lave-linge XR200",
    "warranty_code": "EXT3Y01",
    "warranty_label": "Extension 3 ans",
    "warranty_start_date": "2024-03-02",
    "warranty_end_date": "2027-03-02",
    "product_purchase_price": "499.99",
    "warranty_purchase_date": "2024-03-01",
    "invoice_number": "FAC-2024-0001",
    "purchase_date": "2024-03-01",
    "customer_address_street": "12 rue de la Paix",
    "customer_address_city": "Paris",
    "customer_address_zipcode": "75002",
    "customer_address_country": "France",
}


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeCrm:
    """In-memory stand-in for the CRM account query and bulk job endpoints."""

    job_id = "7508d000000AbCdEF"

    def __init__(self) -> None:
        self.accounts: dict[str, str] = {}
        self.lookup_calls: list[list[str]] = []
        self.calls: list[str] = []
        self.uploaded: list[bytes] = []
        self.statuses: list[dict[str, Any]] = [
            {"state": "JobComplete", "numberRecordsProcessed": 1, "numberRecordsFailed": 0}
        ]
        self.status_errors: list[Exception] = []
        self.failed_results = ""
        self.errors: dict[str, Exception] = {}

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.errors:
            raise self.errors[name]

    def find_account_ids(self, names: list[str]) -> dict[str, str]:
        self.lookup_calls.append(list(names))
        return {name: self.accounts[name] for name in names if name in self.accounts}

    def create_job(self, operation: str, object_name: str) -> str:
        self._record("create_job")
        return self.job_id

    def upload_job_data(self, job_id: str, payload: bytes) -> None:
        self._record("upload_job_data")
        self.uploaded.append(payload)

    def close_job(self, job_id: str) -> None:
        self._record("close_job")

    def get_job_status(self, job_id: str) -> dict[str, Any]:
        self._record("get_job_status")
        if self.status_errors:
            raise self.status_errors.pop(0)
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    def get_failed_results(self, job_id: str) -> str:
        self._record("get_failed_results")
        return self.failed_results

    def get_successful_results(self, job_id: str) -> str:
        self._record("get_successful_results")
        return ""


@pytest.fixture()
def make_row() -> Callable[..., RawRecord]:
    def factory(**overrides: str) -> RawRecord:
        return {**BASE_ROW, **overrides}

    return factory


@pytest.fixture()
def write_sales_csv() -> Callable[[Path, list[RawRecord]], Path]:
    def writer(path: Path, rows: list[RawRecord]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as outfile:
            csv_writer = csv.writer(outfile)
            csv_writer.writerow(FIELD_NAMES)
            for row in rows:
                csv_writer.writerow([row[name] for name in FIELD_NAMES])
        return path

    return writer


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "data" / "inbox").mkdir(parents=True, exist_ok=True)
    (tmp_path / "outputs").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="warranty-import",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        input_dir=str(temp_workspace / "data" / "inbox"),
        output_dir=str(temp_workspace / "outputs"),
        crm_instance_url="https://acme.my.salesforce.com",
        crm_login_url="https://login.salesforce.com",
        crm_client_id="3MVG9-test-client",
        crm_username="integration@acme.fr",
        crm_private_key_path=str(temp_workspace / "private.key"),
        crm_api_version="v59.0",
        http_timeout_seconds=5,
        bulk_operation="insert",
        bulk_object="Opportunity",
        poll_interval_seconds=5,
        poll_timeout_seconds=600,
        poll_read_retries=1,
        retry_backoff_seconds=0,
        schedule_hour_utc=2,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_crm() -> FakeCrm:
    crm = FakeCrm()
    crm.accounts = {"Boulanger Lyon": "0018d00000Xyz12AAA"}
    return crm


@pytest.fixture()
def bulk_jobs(fake_crm: FakeCrm, fake_clock: FakeClock, test_settings: Settings) -> BulkJobOrchestrator:
    return BulkJobOrchestrator(
        fake_crm,
        poll_interval_seconds=test_settings.poll_interval_seconds,
        poll_timeout_seconds=test_settings.poll_timeout_seconds,
        read_retries=test_settings.poll_read_retries,
        retry_backoff_seconds=test_settings.retry_backoff_seconds,
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)


@pytest.fixture()
def pipeline(
    test_settings: Settings,
    session_factory: sessionmaker[Session],
    fake_crm: FakeCrm,
    bulk_jobs: BulkJobOrchestrator,
    fake_clock: FakeClock,
) -> Generator[ImportPipeline, None, None]:
    runner = ImportPipeline(
        test_settings,
        session_factory,
        reconciler=AccountReconciler(fake_crm.find_account_ids),
        bulk_jobs=bulk_jobs,
        clock=fake_clock,
    )
    yield runner
    runner.close()
