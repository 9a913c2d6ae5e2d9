import json

import httpx
import pytest

from warranty_import.auth import TokenProvider
from warranty_import.crm_client import CrmClient, soql_quote
from warranty_import.errors import CrmApiError


INSTANCE_URL = "https://acme.my.salesforce.com"
JOBS_PATH = "/services/data/v59.0/jobs/ingest"


class TokenEndpoint:
    def __init__(self) -> None:
        self.issued = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.issued += 1
        return httpx.Response(200, json={"access_token": f"token-{self.issued}", "instance_url": INSTANCE_URL})


def build_client(handler, token_endpoint: TokenEndpoint | None = None) -> CrmClient:
    token_endpoint = token_endpoint or TokenEndpoint()
    auth_http = httpx.Client(transport=httpx.MockTransport(token_endpoint))
    provider = TokenProvider(
        auth_http,
        token_url="https://login.salesforce.com/services/oauth2/token",
        assertion_factory=lambda: "signed-assertion",
    )
    api_http = httpx.Client(base_url=INSTANCE_URL, transport=httpx.MockTransport(handler))
    return CrmClient(api_http, provider, api_version="v59.0")


def test_create_job_posts_csv_ingest_request() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "7508d000000AbCdEF", "state": "Open"})

    job_id = build_client(handler).create_job("insert", "Opportunity")

    assert job_id == "7508d000000AbCdEF"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == JOBS_PATH
    assert request.headers["Authorization"] == "Bearer token-1"
    assert json.loads(request.content) == {
        "operation": "insert",
        "object": "Opportunity",
        "contentType": "CSV",
        "lineEnding": "LF",
    }


def test_create_job_without_id_is_an_error() -> None:
    client = build_client(lambda request: httpx.Response(200, json={"state": "Open"}))

    with pytest.raises(CrmApiError, match="no id"):
        client.create_job("insert", "Opportunity")


def test_upload_sends_raw_csv_and_close_patches_state() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "PUT":
            return httpx.Response(201)
        return httpx.Response(200, json={"id": "750", "state": "UploadComplete"})

    client = build_client(handler)
    client.upload_job_data("750", b"AccountId,Name\n001,Vente\n")
    client.close_job("750")

    upload, close = seen
    assert upload.method == "PUT"
    assert upload.url.path == f"{JOBS_PATH}/750/batches"
    assert upload.headers["Content-Type"] == "text/csv"
    assert upload.content == b"AccountId,Name\n001,Vente\n"
    assert close.method == "PATCH"
    assert close.url.path == f"{JOBS_PATH}/750"
    assert json.loads(close.content) == {"state": "UploadComplete"}


def test_expired_token_is_refreshed_and_request_replayed() -> None:
    tokens = TokenEndpoint()
    seen_tokens: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_tokens.append(request.headers["Authorization"])
        if request.headers["Authorization"] == "Bearer token-1":
            return httpx.Response(401, json=[{"errorCode": "INVALID_SESSION_ID"}])
        return httpx.Response(200, json={"id": "750", "state": "InProgress", "numberRecordsProcessed": 0})

    status = build_client(handler, tokens).get_job_status("750")

    assert status["state"] == "InProgress"
    assert seen_tokens == ["Bearer token-1", "Bearer token-2"]
    assert tokens.issued == 2


def test_second_unauthorized_response_is_not_replayed_again() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json=[{"errorCode": "INVALID_SESSION_ID"}])

    with pytest.raises(CrmApiError) as excinfo:
        build_client(handler).get_job_status("750")

    assert excinfo.value.status_code == 401
    assert len(calls) == 2


def test_server_error_is_retryable_and_client_error_is_not() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/failedResults"):
            return httpx.Response(503, text="Service Unavailable")
        return httpx.Response(404, json=[{"errorCode": "NOT_FOUND"}])

    client = build_client(handler)

    with pytest.raises(CrmApiError) as server_error:
        client.get_failed_results("750")
    with pytest.raises(CrmApiError) as client_error:
        client.get_job_status("750")

    assert server_error.value.retryable
    assert not client_error.value.retryable


def test_transport_error_becomes_retryable_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CrmApiError) as excinfo:
        build_client(handler).get_job_status("750")

    assert excinfo.value.status_code is None
    assert excinfo.value.retryable


def test_failed_results_are_returned_verbatim() -> None:
    body = '"sf__Id","sf__Error",AccountId\r\n"","REQUIRED_FIELD_MISSING:Required fields are missing: [AccountId]",\r\n'
    client = build_client(lambda request: httpx.Response(200, text=body))

    assert client.get_failed_results("750") == body


def test_account_lookup_escapes_names_and_follows_pagination() -> None:
    queries: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/services/data/v59.0/query":
            queries.append(request.url.params["q"])
            return httpx.Response(
                200,
                json={
                    "done": False,
                    "nextRecordsUrl": "/services/data/v59.0/query/01gRO0000016PIAYA2-2000",
                    "records": [{"Id": "001A", "Name": "Boulanger Lyon"}],
                },
            )
        assert request.url.path == "/services/data/v59.0/query/01gRO0000016PIAYA2-2000"
        return httpx.Response(200, json={"done": True, "records": [{"Id": "001B", "Name": "L'Atelier"}]})

    accounts = build_client(handler).find_account_ids(["Boulanger Lyon", "L'Atelier"])

    assert accounts == {"Boulanger Lyon": "001A", "L'Atelier": "001B"}
    assert queries == ["SELECT Id, Name FROM Account WHERE Name IN ('Boulanger Lyon','L\\'Atelier')"]


def test_account_lookup_with_no_names_makes_no_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("unexpected request")

    assert build_client(handler).find_account_ids([]) == {}


def test_soql_quote_escapes_backslash_before_quote() -> None:
    assert soql_quote("A\\B'C") == "'A\\\\B\\'C'"
