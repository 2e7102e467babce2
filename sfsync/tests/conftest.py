# sfsync/tests/conftest.py
import csv
import io
import pytest
from fastapi.testclient import TestClient
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import AsyncMock

# To allow tests to run from the root directory and import sfsync modules
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))

# Settings are read at import time, so the environment is prepared first.
os.environ["SALESFORCE_CLIENT_ID"] = "test_client_id"
os.environ["SALESFORCE_CLIENT_SECRET"] = "test_client_secret"
os.environ["SALESFORCE_USERNAME"] = "test_username"
os.environ["SALESFORCE_PASSWORD"] = "test_password"
os.environ["SALESFORCE_TOKEN_URL"] = "https://login.salesforce.com/services/oauth2/token"
os.environ["API_V1_STR"] = "/api/v1"
os.environ["DEBUG_MODE"] = "True"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FILENAME"] = "" # No file logging during tests
os.environ["BACKEND_CORS_ORIGINS"] = "[]"


from sfsync.app.main import app as fastapi_app
from sfsync.salesforce.auth import SalesforceAuth
from sfsync.salesforce.client import SalesforceApiClient, get_salesforce_api_client
from sfsync.sync.observer import RecordingJobObserver
from sfsync.sync.retry import PollPolicy, RetryPolicy


class FakeClock:
    """Replaces asyncio.sleep; records every requested delay and never waits."""

    def __init__(self):
        self.sleeps: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    @property
    def elapsed(self) -> float:
        return sum(self.sleeps)


class FakeBulkApi:
    """
    In-memory Bulk API 2.0 ingest endpoints with the same method names as
    SalesforceApiClient. Jobs complete on the first status read unless
    `stall` is set. Successful rows are returned in reverse order so callers
    cannot rely on result position.
    """

    def __init__(
        self,
        reject_row: Optional[Callable[[Dict[str, str]], Optional[str]]] = None,
        fail_job: Optional[Callable[[str], Optional[str]]] = None,
        stall: bool = False,
    ):
        self.reject_row = reject_row or (lambda row: None)
        self.fail_job = fail_job or (lambda csv_text: None)
        self.stall = stall
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.created_ids = 0

    async def create_bulk_ingest_job(self, object_name, operation, external_id_field=None, line_ending="LF"):
        job_id = f"750{len(self.jobs) + 1:015d}"
        self.jobs[job_id] = {
            "object": object_name, "operation": operation, "externalIdFieldName": external_id_field,
            "state": "Open", "csv": None, "error": None,
        }
        return {"id": job_id, "state": "Open", "contentUrl": f"services/data/v58.0/jobs/ingest/{job_id}/batches"}

    async def upload_bulk_job_data(self, content_url, csv_data):
        job_id = content_url.rstrip("/").split("/")[-2]
        self.jobs[job_id]["csv"] = csv_data
        return True

    async def update_bulk_job_state(self, job_id, new_state):
        self.jobs[job_id]["state"] = new_state
        return {"id": job_id, "state": new_state}

    async def get_bulk_job_info(self, job_id):
        job = self.jobs[job_id]
        if job["state"] == "UploadComplete":
            error = self.fail_job(job["csv"])
            if error:
                job["state"], job["error"] = "Failed", error
            else:
                job["state"] = "InProgress" if self.stall else "JobComplete"
        info = {"id": job_id, "state": job["state"], "object": job["object"], "operation": job["operation"]}
        if job["error"]:
            info["errorMessage"] = job["error"]
        return info

    def _rows(self, job_id):
        return list(csv.DictReader(io.StringIO(self.jobs[job_id]["csv"])))

    def _write(self, header, rows):
        output = io.StringIO()
        writer = csv.writer(output, lineterminator="\n")
        writer.writerow(header)
        writer.writerows(rows)
        return output.getvalue()

    async def get_bulk_job_successful_results(self, job_id):
        rows = self._rows(job_id)
        columns = list(rows[0].keys()) if rows else []
        out = []
        for row in rows:
            if self.reject_row(row):
                continue
            if "Id" in row and row["Id"]:
                remote_id = row["Id"] + "AAA" if len(row["Id"]) == 15 else row["Id"]
                echoed = dict(row, Id=remote_id)
                created = "false"
            else:
                self.created_ids += 1
                remote_id = f"003{self.created_ids:015d}"
                echoed = row
                created = "true"
            out.append([remote_id, created] + [echoed[c] for c in columns])
        return self._write(["sf__Id", "sf__Created"] + columns, list(reversed(out)))

    async def get_bulk_job_failed_results(self, job_id):
        rows = self._rows(job_id)
        columns = list(rows[0].keys()) if rows else []
        out = []
        for row in rows:
            error = self.reject_row(row)
            if error:
                out.append(["", error] + [row[c] for c in columns])
        return self._write(["sf__Id", "sf__Error"] + columns, out)

    async def get_bulk_job_unprocessed_records(self, job_id):
        rows = self._rows(job_id)
        return self._write(list(rows[0].keys()) if rows else [], [])


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_bulk_api():
    """Factory: fake_bulk_api(reject_row=..., fail_job=..., stall=...)."""
    return FakeBulkApi


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_delay=1.0, multiplier=2.0, max_delay=30.0)


@pytest.fixture
def short_poll() -> PollPolicy:
    return PollPolicy(interval=2.0, backoff=1.0, max_interval=2.0, max_wait=10.0)


@pytest.fixture
def recording_observer() -> RecordingJobObserver:
    return RecordingJobObserver()


@pytest.fixture
def mock_salesforce_auth_instance():
    mock_auth = AsyncMock(spec=SalesforceAuth)
    mock_auth.get_auth_details = AsyncMock(return_value=("test_access_token", "https://test.my.salesforce.com"))
    mock_auth.handle_401_unauthorized = AsyncMock()
    return mock_auth


@pytest.fixture
def mock_salesforce_api_client():
    # Methods are configured per test, e.g. mock.create_sobject_record.return_value = {...}
    return AsyncMock(spec=SalesforceApiClient)


@pytest.fixture
def client(mock_salesforce_api_client: AsyncMock) -> Generator[TestClient, Any, None]:
    """
    Test client for the FastAPI application, with the Salesforce client
    dependency replaced by the mock.
    """
    async def mock_get_api_client():
        return mock_salesforce_api_client

    fastapi_app.dependency_overrides[get_salesforce_api_client] = mock_get_api_client
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides = {}
