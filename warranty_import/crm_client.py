from collections.abc import Iterable
import logging
import time
from typing import Any

import httpx

from warranty_import.auth import TokenProvider
from warranty_import.errors import CrmApiError


logger = logging.getLogger(__name__)


def soql_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class CrmClient:
    """Thin REST client for the CRM data API and its bulk ingestion jobs."""

    def __init__(self, http_client: httpx.Client, token_provider: TokenProvider, *, api_version: str) -> None:
        self.http_client = http_client
        self.token_provider = token_provider
        self.api_version = api_version

    @property
    def data_path(self) -> str:
        return f"/services/data/{self.api_version}"

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", {}) or {})
        token = self.token_provider.get_token()
        try:
            response = self.http_client.request(
                method, path, headers={**headers, "Authorization": f"Bearer {token}"}, **kwargs
            )
            if response.status_code == 401:
                # Expired or revoked session: refresh once and replay.
                token = self.token_provider.refresh(token)
                response = self.http_client.request(
                    method, path, headers={**headers, "Authorization": f"Bearer {token}"}, **kwargs
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CrmApiError(
                f"{method} {path} returned {exc.response.status_code}: {exc.response.text[:500]}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise CrmApiError(f"{method} {path} failed: {exc}", transient=True) from exc
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            return response.json()
        except ValueError as exc:
            raise CrmApiError(
                f"{response.request.method} {response.request.url.path} returned invalid JSON",
                status_code=response.status_code,
            ) from exc

    def query(self, soql: str) -> list[dict[str, Any]]:
        started = time.monotonic()
        logger.info("executing soql query", extra={"soql": soql})

        data = self._json(self._request("GET", f"{self.data_path}/query", params={"q": soql}))
        records = list(data.get("records", []))
        while not data.get("done", True) and data.get("nextRecordsUrl"):
            data = self._json(self._request("GET", data["nextRecordsUrl"]))
            records.extend(data.get("records", []))

        logger.info(
            "soql query executed",
            extra={"record_count": len(records), "duration_seconds": round(time.monotonic() - started, 2)},
        )
        return records

    def find_account_ids(self, names: Iterable[str]) -> dict[str, str]:
        names = list(names)
        if not names:
            return {}
        soql = "SELECT Id, Name FROM Account WHERE Name IN ({names})".format(
            names=",".join(soql_quote(name) for name in names)
        )
        return {record["Name"]: record["Id"] for record in self.query(soql)}

    def create_job(self, operation: str, object_name: str) -> str:
        response = self._request(
            "POST",
            f"{self.data_path}/jobs/ingest",
            json={"operation": operation, "object": object_name, "contentType": "CSV", "lineEnding": "LF"},
        )
        data = self._json(response)
        if not data.get("id"):
            raise CrmApiError("bulk job creation response has no id", status_code=response.status_code)
        return str(data["id"])

    def upload_job_data(self, job_id: str, payload: bytes) -> None:
        self._request(
            "PUT",
            f"{self.data_path}/jobs/ingest/{job_id}/batches",
            content=payload,
            headers={"Content-Type": "text/csv"},
        )

    def close_job(self, job_id: str) -> None:
        self._request("PATCH", f"{self.data_path}/jobs/ingest/{job_id}", json={"state": "UploadComplete"})

    def get_job_status(self, job_id: str) -> dict[str, Any]:
        return self._json(self._request("GET", f"{self.data_path}/jobs/ingest/{job_id}"))

    def get_failed_results(self, job_id: str) -> str:
        return self._request("GET", f"{self.data_path}/jobs/ingest/{job_id}/failedResults").text

    def get_successful_results(self, job_id: str) -> str:
        return self._request("GET", f"{self.data_path}/jobs/ingest/{job_id}/successfulResults").text
