# sfsync/app/routers/sync.py
from fastapi import APIRouter, Body, Depends, Path, status
import logging

from sfsync.core.config import settings
from sfsync.core.schemas import SyncRequest, SyncResponse, SyncResultDetail
from sfsync.salesforce.client import SalesforceApiClient, get_salesforce_api_client
from sfsync.sync.dispatcher import sync_records

logger = logging.getLogger(settings.APP_NAME)
router = APIRouter()


@router.post(
    "/sync/{object_name}",
    response_model=SyncResponse,
    status_code=status.HTTP_200_OK,
    summary="Synchronize records into a Salesforce SObject",
    description=(
        "Creates, updates, upserts or deletes the given events. A single event, or any request with batching "
        "disabled, is sent through the REST API one record at a time; otherwise events are grouped into Bulk API 2.0 "
        "jobs. The response holds one result per event, in request order. Rejected records are reported per event; "
        "only an invalid request fails as a whole."
    ),
)
async def handle_sync_endpoint(
    object_name: str = Path(..., pattern=r"^[A-Za-z][A-Za-z0-9_]*$", description="SObject API name, e.g. Contact."),
    payload: SyncRequest = Body(...),
    client: SalesforceApiClient = Depends(get_salesforce_api_client),
):
    logger.info(
        f"Sync request for {object_name}: {len(payload.events)} event(s), operation={payload.operation}, "
        f"batching={payload.enable_batching}"
    )
    results = await sync_records(
        client,
        object_name,
        payload.events,
        operation=payload.operation,
        match_config=payload.match_config(),
        batch_options=payload.batch_options(),
    )
    succeeded = sum(1 for result in results if result.success)
    failed = len(results) - succeeded
    return SyncResponse(
        success=failed == 0,
        message=f"{succeeded} of {len(results)} record(s) synchronized to {object_name}.",
        total=len(results),
        succeeded=succeeded,
        failed=failed,
        results=[SyncResultDetail.from_result(result) for result in results],
    )
