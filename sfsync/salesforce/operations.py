# sfsync/salesforce/operations.py
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sfsync.core.config import settings
from sfsync.core.errors import RecordLookupError, SalesforceApiError
from sfsync.salesforce.client import SalesforceApiClient

logger = logging.getLogger(settings.APP_NAME)

_SOQL_FIELD = re.compile(r"^[A-Za-z][A-Za-z0-9_.]*$")

# --- Standard SObject Operations ---


def _first_error(response: Dict[str, Any], default: str) -> str:
    errors = response.get("errors") or []
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("message", default)
    return default


async def create_record(client: SalesforceApiClient, object_name: str, data: Dict[str, Any]) -> str:
    """
    Creates a new record in the specified SObject.
    Returns the ID of the newly created record.
    """
    logger.info(f"Creating record in {object_name} with fields: {list(data)}")
    response = await client.create_sobject_record(object_name, data)
    if not response.get("success"):
        logger.error(f"Failed to create record in {object_name}. Errors: {response.get('errors')}")
        raise SalesforceApiError(400, _first_error(response, "Failed to create record."))
    record_id = response.get("id")
    logger.info(f"Successfully created record in {object_name} with ID: {record_id}")
    return record_id


async def update_record(client: SalesforceApiClient, object_name: str, record_id: str, data: Dict[str, Any]) -> None:
    """Salesforce returns HTTP 204 No Content on successful update."""
    logger.info(f"Updating record {record_id} in {object_name} with fields: {list(data)}")
    if not await client.update_sobject_record(object_name, record_id, data):
        logger.error(f"Update operation for {record_id} in {object_name} did not return success (204).")
        raise SalesforceApiError(500, "Update operation failed to confirm success.")
    logger.info(f"Successfully updated record {record_id} in {object_name}")


async def delete_record(client: SalesforceApiClient, object_name: str, record_id: str) -> None:
    logger.info(f"Deleting record {record_id} from {object_name}")
    if not await client.delete_sobject_record(object_name, record_id):
        logger.error(f"Delete operation for {record_id} in {object_name} did not return success (204).")
        raise SalesforceApiError(500, "Delete operation failed to confirm success.")
    logger.info(f"Successfully deleted record {record_id} from {object_name}")


async def upsert_record(
    client: SalesforceApiClient, object_name: str, external_id_field: str, external_id_value: str, data: Dict[str, Any]
) -> Tuple[Optional[str], bool]:
    """
    Upserts a record based on an external ID.
    Returns the record ID and a boolean indicating if the record was created.
    The ID is None when Salesforce answers an update with 204 and no body.
    """
    logger.info(f"Upserting record in {object_name} via {external_id_field}={external_id_value}")
    response = await client.upsert_sobject_record(object_name, external_id_field, external_id_value, data)
    if response.get("success") is False:
        logger.error(f"Upsert failed for {object_name}/{external_id_field}={external_id_value}. Errors: {response.get('errors')}")
        raise SalesforceApiError(400, _first_error(response, "Upsert operation failed."))

    record_id = response.get("id")
    created = bool(response.get("created", False))
    if not record_id:
        logger.warning(f"Upsert (update) for {object_name}/{external_id_field}={external_id_value} returned no record ID.")
    status_str = "created" if created else "updated"
    logger.info(f"Successfully {status_str} record in {object_name} via {external_id_field}={external_id_value}. Record ID: {record_id}")
    return record_id, created


# --- Record lookup ---


def soql_literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def build_match_query(object_name: str, match_values: Mapping[str, Any], operator: str = "OR", limit: int = 2) -> str:
    if not match_values:
        raise RecordLookupError("No match values given to look the record up.")
    if operator not in ("OR", "AND"):
        raise RecordLookupError(f"Unsupported match operator: {operator}")
    for name in [object_name, *match_values]:
        if not _SOQL_FIELD.match(name):
            raise RecordLookupError(f"'{name}' is not a valid field or object name.")
    conditions = f" {operator} ".join(f"{field} = {soql_literal(value)}" for field, value in match_values.items())
    return f"SELECT Id FROM {object_name} WHERE {conditions} LIMIT {limit}"


async def find_record_ids(
    client: SalesforceApiClient, object_name: str, match_values: Mapping[str, Any], operator: str = "OR"
) -> List[str]:
    """Ids of (at most two) records whose fields equal the match values, combined with OR or AND."""
    query = build_match_query(object_name, match_values, operator)
    logger.debug(f"Looking up {object_name} with: {query}")
    result = await client.execute_soql_query(query)
    return [record["Id"] for record in result.get("records", []) if record.get("Id")]


async def resolve_record_id(
    client: SalesforceApiClient, object_name: str, match_values: Mapping[str, Any], operator: str = "OR"
) -> str:
    """The single record matching the values; none or several matches is an error."""
    record_ids = await find_record_ids(client, object_name, match_values, operator)
    if not record_ids:
        raise RecordLookupError(f"No {object_name} record matches {dict(match_values)}.")
    if len(record_ids) > 1:
        raise RecordLookupError(f"Multiple {object_name} records match {dict(match_values)}; refusing to pick one.")
    return record_ids[0]
