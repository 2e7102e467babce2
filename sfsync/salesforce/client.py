# sfsync/salesforce/client.py
import json
import logging
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import httpx
from fastapi import Depends, status

from sfsync.core.config import settings
from sfsync.core.errors import SalesforceApiError, TransientNetworkError
from sfsync.salesforce.auth import SalesforceAuth, get_salesforce_auth_instance

logger = logging.getLogger(settings.APP_NAME)

# Throttling and server-side failures are worth another attempt; other 4xx are not.
RETRYABLE_STATUS_CODES = {status.HTTP_429_TOO_MANY_REQUESTS}


def _error_detail(response: httpx.Response) -> str:
    detail = response.text
    try:
        sfdc_error = response.json()
        if isinstance(sfdc_error, list) and sfdc_error: # Standard SF error format
            detail = "; ".join(str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in sfdc_error)
        elif isinstance(sfdc_error, dict):
            detail = sfdc_error.get("message") or sfdc_error.get("error_description") or json.dumps(sfdc_error)
    except ValueError: # Not a JSON response
        pass
    return detail


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e: # 2xx with an HTML maintenance or proxy page
        logger.warning(f"Salesforce API returned a non-JSON body ({response.status_code}) for {response.request.method} {response.request.url}: {response.text[:200]}")
        raise TransientNetworkError(
            f"Salesforce API returned an unreadable response ({response.status_code}): {response.text[:200]}",
            response.status_code,
        ) from e


class SalesforceApiClient:
    """
    Authenticated access to the Salesforce REST and Bulk API 2.0 endpoints.
    Retries once after refreshing the token on 401; every other retry decision
    belongs to the caller.
    """

    def __init__(self, auth_instance: SalesforceAuth, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.auth = auth_instance
        self._transport = transport

    async def _get_base_url(self) -> str:
        _, instance_url = await self.auth.get_auth_details()
        return f"{instance_url.rstrip('/')}/services/data/{settings.SALESFORCE_API_VERSION}"

    async def _get_headers(self, content_type: str = "application/json", accept: str = "application/json") -> Dict[str, str]:
        access_token, _ = await self.auth.get_auth_details()
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": content_type,
            "Accept": accept,
            "Sforce-Call-Options": f"client={settings.APP_NAME}/{settings.APP_VERSION}",
        }

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
        content: Optional[bytes] = None,
        content_type: str = "application/json",
        accept: str = "application/json",
        timeout: Optional[float] = None,
        absolute_path: bool = False,
    ) -> httpx.Response:
        """
        Sends one authenticated request. `endpoint` is relative to the versioned
        data URL unless `absolute_path` is set, in which case it is relative to
        the instance URL (Bulk API content URLs are returned that way).

        Raises TransientNetworkError for network failures, 429 and 5xx;
        SalesforceApiError for any other error status.
        """
        if absolute_path:
            _, instance_url = await self.auth.get_auth_details()
            url = f"{instance_url.rstrip('/')}/{endpoint.lstrip('/')}"
        else:
            url = f"{await self._get_base_url()}{endpoint}"

        async with httpx.AsyncClient(
            timeout=timeout or settings.SALESFORCE_REQUEST_TIMEOUT_SECONDS,
            transport=self._transport,
        ) as client:
            for attempt in range(2):
                headers = await self._get_headers(content_type=content_type, accept=accept)
                try:
                    logger.debug(f"Salesforce API Request: {method} {url} | Params: {params}")
                    response = await client.request(
                        method, url, headers=headers, params=params, json=json_data, content=content
                    )
                except httpx.RequestError as e: # Network errors, timeouts, etc.
                    logger.warning(f"Salesforce API RequestError: {e.__class__.__name__} on {method} {url}: {e}")
                    raise TransientNetworkError(f"Salesforce API communication error: {e.__class__.__name__}") from e

                logger.debug(f"Salesforce API Response: {response.status_code} {response.text[:500]}")
                if response.status_code == status.HTTP_401_UNAUTHORIZED and attempt == 0:
                    await self.auth.handle_401_unauthorized()
                    continue
                break

        if response.status_code in RETRYABLE_STATUS_CODES or response.status_code >= 500:
            detail = _error_detail(response)
            logger.warning(f"Salesforce API transient error {response.status_code} on {method} {url}: {detail}")
            raise TransientNetworkError(f"Salesforce API Error ({response.status_code}): {detail}", response.status_code)
        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.error(f"Salesforce API error {response.status_code} on {method} {url}: {detail}")
            raise SalesforceApiError(response.status_code, detail)
        return response

    # --- Standard SObject Methods ---

    async def create_sobject_record(self, object_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.request("POST", f"/sobjects/{object_name}", json_data=data)
        return _json_body(response) # { "id": "...", "success": true, "errors": [] }

    async def update_sobject_record(self, object_name: str, record_id: str, data: Dict[str, Any]) -> bool:
        """Returns True on success (204 No Content)."""
        response = await self.request("PATCH", f"/sobjects/{object_name}/{quote(record_id, safe='')}", json_data=data)
        return response.status_code == status.HTTP_204_NO_CONTENT

    async def delete_sobject_record(self, object_name: str, record_id: str) -> bool:
        """Returns True on success (204 No Content)."""
        response = await self.request("DELETE", f"/sobjects/{object_name}/{quote(record_id, safe='')}")
        return response.status_code == status.HTTP_204_NO_CONTENT

    async def upsert_sobject_record(
        self, object_name: str, external_id_field: str, external_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        # The external ID travels in the URL, not in the PATCH body. Values may hold "#", "?" or "/".
        payload = {k: v for k, v in data.items() if k != external_id_field}
        response = await self.request("PATCH", f"/sobjects/{object_name}/{external_id_field}/{quote(str(external_id), safe='')}", json_data=payload)
        if response.status_code == status.HTTP_204_NO_CONTENT:
            # Updated, and the org returned no body.
            return {"id": None, "success": True, "created": False, "errors": []}
        return _json_body(response) # 201 created / 200 updated: {"id", "success", "created", "errors"}

    async def execute_soql_query(self, query: str) -> Dict[str, Any]:
        response = await self.request("GET", "/query", params={"q": query})
        return _json_body(response) # records, totalSize, done, nextRecordsUrl

    # --- Bulk API 2.0 ingest jobs ---

    async def create_bulk_ingest_job(
        self, object_name: str, operation: str, external_id_field: Optional[str] = None, line_ending: str = "LF"
    ) -> Dict[str, Any]:
        job_config: Dict[str, Any] = {
            "object": object_name,
            "operation": operation, # 'insert', 'update', 'upsert', 'delete'
            "contentType": "CSV",
            "columnDelimiter": "COMMA",
            "lineEnding": line_ending,
        }
        if operation == "upsert" and external_id_field:
            job_config["externalIdFieldName"] = external_id_field
        response = await self.request("POST", "/jobs/ingest", json_data=job_config)
        return _json_body(response) # id, state, contentUrl, ...

    async def upload_bulk_job_data(self, content_url: str, csv_data: Union[str, bytes]) -> bool:
        """PUTs the CSV payload to the job's contentUrl. Salesforce answers 201 Created."""
        data_to_upload = csv_data.encode("utf-8") if isinstance(csv_data, str) else csv_data
        response = await self.request(
            "PUT",
            content_url,
            content=data_to_upload,
            content_type="text/csv",
            timeout=settings.SALESFORCE_UPLOAD_TIMEOUT_SECONDS,
            absolute_path=True,
        )
        return response.status_code == status.HTTP_201_CREATED

    async def update_bulk_job_state(self, job_id: str, new_state: str) -> Dict[str, Any]:
        """Moves the job to 'UploadComplete' or 'Aborted'."""
        response = await self.request("PATCH", f"/jobs/ingest/{job_id}", json_data={"state": new_state})
        return _json_body(response)

    async def get_bulk_job_info(self, job_id: str) -> Dict[str, Any]:
        response = await self.request("GET", f"/jobs/ingest/{job_id}")
        return _json_body(response)

    async def _get_bulk_job_csv(self, job_id: str, resource: str) -> str:
        response = await self.request("GET", f"/jobs/ingest/{job_id}/{resource}/", accept="text/csv")
        return response.text

    async def get_bulk_job_successful_results(self, job_id: str) -> str:
        return await self._get_bulk_job_csv(job_id, "successfulResults")

    async def get_bulk_job_failed_results(self, job_id: str) -> str:
        return await self._get_bulk_job_csv(job_id, "failedResults")

    async def get_bulk_job_unprocessed_records(self, job_id: str) -> str:
        return await self._get_bulk_job_csv(job_id, "unprocessedrecords")


async def get_salesforce_api_client(
    auth_instance: SalesforceAuth = Depends(get_salesforce_auth_instance),
) -> SalesforceApiClient:
    """FastAPI dependency to get an instance of SalesforceApiClient."""
    return SalesforceApiClient(auth_instance)
