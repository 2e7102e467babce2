# sfsync/tests/test_api_client.py
import json

import httpx
import pytest

from sfsync.core.config import settings
from sfsync.core.errors import SalesforceApiError, TransientNetworkError
from sfsync.salesforce.client import SalesforceApiClient

pytestmark = pytest.mark.asyncio

DATA_PATH = f"/services/data/{settings.SALESFORCE_API_VERSION}"


def _client(auth, handler):
    return SalesforceApiClient(auth, transport=httpx.MockTransport(handler))


async def test_create_bulk_ingest_job_posts_csv_job_config(mock_salesforce_auth_instance):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"], seen["path"] = request.method, request.url.path
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"id": "750A", "state": "Open", "contentUrl": "services/data/v58.0/jobs/ingest/750A/batches"})

    info = await _client(mock_salesforce_auth_instance, handler).create_bulk_ingest_job("Contact", "upsert", "Customer_Id__c")

    assert info["id"] == "750A"
    assert seen["method"] == "POST"
    assert seen["path"] == f"{DATA_PATH}/jobs/ingest"
    assert seen["auth"] == "Bearer test_access_token"
    assert seen["body"] == {
        "object": "Contact", "operation": "upsert", "contentType": "CSV",
        "columnDelimiter": "COMMA", "lineEnding": "LF", "externalIdFieldName": "Customer_Id__c",
    }


async def test_upload_puts_csv_to_content_url(mock_salesforce_auth_instance):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"], seen["url"] = request.method, str(request.url)
        seen["content_type"] = request.headers["Content-Type"]
        seen["body"] = request.content.decode("utf-8")
        return httpx.Response(201)

    accepted = await _client(mock_salesforce_auth_instance, handler).upload_bulk_job_data(
        "services/data/v58.0/jobs/ingest/750A/batches", "LastName\nSmith\n"
    )

    assert accepted is True
    assert seen == {
        "method": "PUT",
        "url": "https://test.my.salesforce.com/services/data/v58.0/jobs/ingest/750A/batches",
        "content_type": "text/csv",
        "body": "LastName\nSmith\n",
    }


async def test_result_csv_is_requested_as_text(mock_salesforce_auth_instance):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"{DATA_PATH}/jobs/ingest/750A/failedResults/"
        assert request.headers["Accept"] == "text/csv"
        return httpx.Response(200, text="sf__Id,sf__Error,LastName\n")

    text = await _client(mock_salesforce_auth_instance, handler).get_bulk_job_failed_results("750A")
    assert text == "sf__Id,sf__Error,LastName\n"


async def test_server_errors_and_throttling_are_transient(mock_salesforce_auth_instance):
    responses = iter([httpx.Response(503, text="Service Unavailable"), httpx.Response(429, json=[{"message": "REQUEST_LIMIT_EXCEEDED"}])])
    client = _client(mock_salesforce_auth_instance, lambda request: next(responses))

    with pytest.raises(TransientNetworkError) as first:
        await client.get_bulk_job_info("750A")
    with pytest.raises(TransientNetworkError) as second:
        await client.get_bulk_job_info("750A")

    assert first.value.status_code == 503
    assert second.value.status_code == 429


async def test_client_errors_carry_salesforce_message(mock_salesforce_auth_instance):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=[{"message": "No such column 'Foo__c' on entity 'Contact'", "errorCode": "INVALID_FIELD"}])

    with pytest.raises(SalesforceApiError) as exc_info:
        await _client(mock_salesforce_auth_instance, handler).create_sobject_record("Contact", {"Foo__c": 1})

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "No such column 'Foo__c' on entity 'Contact'"


async def test_network_failure_is_transient(mock_salesforce_auth_instance):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientNetworkError, match="ConnectError"):
        await _client(mock_salesforce_auth_instance, handler).get_bulk_job_info("750A")


async def test_expired_session_is_refreshed_once(mock_salesforce_auth_instance):
    responses = iter([httpx.Response(401, json=[{"message": "Session expired or invalid"}]), httpx.Response(204)])
    client = _client(mock_salesforce_auth_instance, lambda request: next(responses))

    assert await client.delete_sobject_record("Contact", "003A") is True
    mock_salesforce_auth_instance.handle_401_unauthorized.assert_awaited_once()


async def test_upsert_without_body_reports_update(mock_salesforce_auth_instance):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        assert request.url.path == f"{DATA_PATH}/sobjects/Contact/Customer_Id__c/C-1"
        assert json.loads(request.content) == {"LastName": "Smith"}
        return httpx.Response(204)

    response = await _client(mock_salesforce_auth_instance, handler).upsert_sobject_record(
        "Contact", "Customer_Id__c", "C-1", {"LastName": "Smith", "Customer_Id__c": "C-1"}
    )
    assert response["success"] is True and response["created"] is False


async def test_non_json_success_body_is_transient(mock_salesforce_auth_instance):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>Service temporarily unavailable</html>")

    with pytest.raises(TransientNetworkError) as exc_info:
        await _client(mock_salesforce_auth_instance, handler).get_bulk_job_info("750X")
    assert exc_info.value.status_code == 200
    assert "unreadable response" in exc_info.value.message


async def test_upsert_escapes_external_id_in_path(mock_salesforce_auth_instance):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.raw_path.decode().endswith("/sobjects/Contact/Customer_Id__c/ACME%232")
        return httpx.Response(201, json={"id": "003A", "success": True, "created": True, "errors": []})

    response = await _client(mock_salesforce_auth_instance, handler).upsert_sobject_record(
        "Contact", "Customer_Id__c", "ACME#2", {"LastName": "Smith"}
    )
    assert response["created"] is True


async def test_record_id_is_escaped_in_path(mock_salesforce_auth_instance):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.raw_path.decode() == f"{DATA_PATH}/sobjects/Contact/003A%2F..%3Fx"
        return httpx.Response(204)

    assert await _client(mock_salesforce_auth_instance, handler).delete_sobject_record("Contact", "003A/..?x") is True
