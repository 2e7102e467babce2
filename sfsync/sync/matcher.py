# sfsync/sync/matcher.py
import logging
from typing import Optional, Sequence

from pydantic import ValidationError

from sfsync.core.config import settings
from sfsync.core.errors import ConfigurationError
from sfsync.core.models import (
    CreateOperation, CustomFieldMatch, DeleteOperation, Event, ExternalIdMatch,
    MatchConfig, Operation, OperationKind, RecordIdMatch, UpdateOperation, UpsertOperation,
)
from sfsync.sync.objects import ObjectSchema

logger = logging.getLogger(settings.APP_NAME)

RECORD_ID_FIELD = "Id"


def _upsert_field(match_config: MatchConfig, events: Sequence[Event]) -> str:
    if match_config.match_field:
        return match_config.match_field
    declared = {event.external_id_field for event in events}
    if declared == {None}:
        raise ConfigurationError("upsert requires an external ID field (match_field) to identify records.")
    if len(declared) > 1:
        raise ConfigurationError(f"Events in one upsert batch declare different external ID fields: {sorted(f for f in declared if f)}")
    return declared.pop()


def external_id_value(event: Event, field: str, schema: Optional[ObjectSchema] = None) -> Optional[str]:
    value = event.external_id_value
    if value is None:
        data = schema.to_api_fields(event.data) if schema else event.data
        value = data.get(field)
    if value is None and field == RECORD_ID_FIELD:
        value = event.record_id
    return None if value is None or str(value) == "" else str(value)


def _target_match(kind: OperationKind, match_config: MatchConfig, events: Sequence[Event], bulk: bool):
    has_ids = all(event.record_id for event in events)
    if match_config.match_field in (None, RECORD_ID_FIELD) and has_ids:
        return RecordIdMatch()
    if bulk:
        raise ConfigurationError(f"Bulk {kind.value} requires a record Id on every event.")
    if all(event.match_values for event in events) and match_config.match_field != RECORD_ID_FIELD:
        return CustomFieldMatch(operator=match_config.match_operator)
    raise ConfigurationError(f"{kind.value} requires a record Id or match values on every event.")


def resolve_operation(
    kind: OperationKind,
    match_config: MatchConfig,
    events: Sequence[Event],
    bulk: bool = False,
    offset: int = 0,
    schema: Optional[ObjectSchema] = None,
) -> Operation:
    """
    Picks the match strategy for a group of events and returns the operation
    variant carrying it. Create needs no matcher; upsert matches on an external
    ID field; update and delete match on the record Id or, on the
    single-record path only, by looking the record up from its match values.
    """
    if not events:
        raise ConfigurationError("No events to match.")
    try:
        if kind is OperationKind.CREATE:
            return CreateOperation()
        if kind is OperationKind.UPSERT:
            field = _upsert_field(match_config, events)
            for i, event in enumerate(events):
                if external_id_value(event, field, schema) is None:
                    raise ConfigurationError(f"Event {offset + i} has no value for external ID field '{field}'.")
            return UpsertOperation(match=ExternalIdMatch(field=field))
        if kind is OperationKind.UPDATE:
            return UpdateOperation(match=_target_match(kind, match_config, events, bulk))
        if kind is OperationKind.DELETE:
            return DeleteOperation(match=_target_match(kind, match_config, events, bulk))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid matcher configuration for {kind.value}: {e}") from e
    raise ConfigurationError(f"Unsupported operation: {kind}")


def validate_required_fields(kind: OperationKind, events: Sequence[Event], schema: ObjectSchema, offset: int = 0) -> None:
    """
    Create and upsert must be able to create the record, so every event needs
    the object's mandatory create fields. Each event is checked on its own.
    """
    if kind not in (OperationKind.CREATE, OperationKind.UPSERT):
        return
    for i, event in enumerate(events):
        missing = schema.missing_create_fields(event.data)
        if missing:
            logger.error(f"Event {offset + i} is missing required {schema.name} field(s) {missing} for {kind.value}.")
            raise ConfigurationError(
                f"Missing required field(s) {', '.join(missing)} on event {offset + i}: "
                f"{kind.value} of {schema.name} requires them."
            )
