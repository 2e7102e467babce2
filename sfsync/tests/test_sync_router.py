# sfsync/tests/test_sync_router.py
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from sfsync.core.config import settings

SYNC_URL = f"{settings.API_V1_STR}/sync/Contact"


def test_single_create_returns_one_result(client: TestClient, mock_salesforce_api_client: AsyncMock):
    mock_salesforce_api_client.create_sobject_record = AsyncMock(return_value={"id": "003A", "success": True, "errors": []})

    response = client.post(SYNC_URL, json={"operation": "create", "events": [{"data": {"last_name": "Smith"}}]})

    assert response.status_code == 200
    json_response = response.json()
    assert json_response["success"] is True
    assert json_response["total"] == 1
    assert json_response["results"] == [
        {"index": 0, "operation": "create", "success": True, "id": "003A", "created": True, "errors": None}
    ]
    mock_salesforce_api_client.create_sobject_record.assert_awaited_once_with("Contact", {"LastName": "Smith"})


def test_record_failure_is_reported_not_raised(client: TestClient, mock_salesforce_api_client: AsyncMock):
    mock_salesforce_api_client.update_sobject_record = AsyncMock(return_value=True)
    mock_salesforce_api_client.delete_sobject_record = AsyncMock(return_value=True)
    mock_salesforce_api_client.execute_soql_query = AsyncMock(return_value={"records": []})

    response = client.post(SYNC_URL, json={
        "operation": "update",
        "events": [
            {"record_id": "0035g00000AbCdE", "data": {"email": "a@example.com"}},
            {"match_values": {"Email": "missing@example.com"}, "data": {"first_name": "Ann"}},
        ],
    })

    assert response.status_code == 200
    json_response = response.json()
    assert json_response["success"] is False
    assert (json_response["succeeded"], json_response["failed"]) == (1, 1)
    assert "No Contact record" in json_response["results"][1]["errors"][0]["message"]


def test_missing_required_field_is_bad_request(client: TestClient, mock_salesforce_api_client: AsyncMock):
    response = client.post(SYNC_URL, json={
        "operation": "create",
        "enable_batching": True,
        "events": [{"data": {"last_name": "Smith"}}, {"data": {"first_name": "Ann"}}],
    })

    assert response.status_code == 400
    assert "LastName" in response.json()["detail"]
    mock_salesforce_api_client.create_bulk_ingest_job.assert_not_awaited()


def test_unframeable_bulk_value_is_a_per_event_failure(client: TestClient, mock_salesforce_api_client: AsyncMock):
    response = client.post(SYNC_URL, json={
        "operation": "create",
        "enable_batching": True,
        "events": [{"data": {"last_name": "#N/A"}}, {"data": {"last_name": "Jones"}}],
    })

    assert response.status_code == 200
    json_response = response.json()
    assert (json_response["succeeded"], json_response["failed"]) == (0, 2)
    assert "#N/A" in json_response["results"][0]["errors"][0]["message"]
    mock_salesforce_api_client.create_bulk_ingest_job.assert_not_awaited()


def test_empty_event_list_is_rejected(client: TestClient):
    response = client.post(SYNC_URL, json={"operation": "create", "events": []})
    assert response.status_code == 422


def test_invalid_match_operator_is_rejected(client: TestClient):
    response = client.post(SYNC_URL, json={"operation": "delete", "match_operator": "XOR", "events": [{"record_id": "003A"}]})
    assert response.status_code == 422


def test_health_check(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["application"] == settings.APP_NAME
