# sfsync/sync/framer.py
import csv
import json
import logging
import re
from datetime import date, datetime, time
from decimal import Decimal
from io import StringIO
from typing import Any, Dict, List, Optional, Tuple

from sfsync.core.config import settings
from sfsync.core.errors import ConfigurationError, EncodingError
from sfsync.core.models import (
    Batch, DeleteOperation, Event, ExternalIdMatch, Operation, RecordIdMatch, TabularPayload,
)
from sfsync.sync.matcher import RECORD_ID_FIELD, external_id_value
from sfsync.sync.objects import ObjectSchema

logger = logging.getLogger(settings.APP_NAME)

# Bulk API 2.0: an empty cell leaves the field untouched, #N/A sets it to null.
ABSENT_VALUE = ""
NULL_SENTINEL = "#N/A"

_COLUMN_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_.]*$")
# TAB, LF and CR survive RFC 4180 quoting; every other control character is rejected by the ingest parser.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_ABSENT = object()


def format_value(value: Any, column: str = "") -> str:
    """Renders one field value as a CSV cell."""
    if value is _ABSENT:
        return ABSENT_VALUE
    if value is None:
        return NULL_SENTINEL
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (float, Decimal)):
        number = Decimal(repr(value)) if isinstance(value, float) else value
        if not number.is_finite():
            raise EncodingError(f"Field '{column}' holds {value!r}, which has no CSV representation.")
        # Fixed-point only; the ingest parser rejects exponents such as 1e+16.
        return format(number, "f")
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        text = json.dumps(value, separators=(",", ":"), default=str)
    else:
        text = str(value)
    if text == NULL_SENTINEL:
        raise EncodingError(f"Field '{column}' holds the literal '{NULL_SENTINEL}', which the Bulk API reads as 'clear this field'.")
    if _CONTROL_CHARS.search(text):
        raise EncodingError(f"Field '{column}' contains control characters that cannot be framed.")
    return text


def _identifier(operation: Operation, schema: ObjectSchema) -> Optional[Tuple[str, Any]]:
    match = getattr(operation, "match", None)
    if match is None:
        return None
    if isinstance(match, RecordIdMatch):
        return RECORD_ID_FIELD, lambda event: event.record_id
    if isinstance(match, ExternalIdMatch):
        return match.field, lambda event: external_id_value(event, match.field, schema)
    raise ConfigurationError(f"{operation.kind} by custom field lookup cannot run as a bulk job.")


def _columns(events: Tuple[Event, ...], schema: ObjectSchema, id_column: Optional[str]) -> List[str]:
    seen: Dict[str, None] = {}
    if id_column:
        seen[id_column] = None
    for event in events:
        for key in event.data:
            seen.setdefault(schema.api_name(key), None)
    return list(seen)


def frame(batch: Batch, operation: Operation, schema: ObjectSchema) -> TabularPayload:
    """
    Serializes a batch into Bulk API CSV: the identifier column first, then the
    union of every event's fields in first-seen order. Fields an event does not
    carry are left empty; fields explicitly set to None get the null sentinel.
    """
    identifier = _identifier(operation, schema)
    id_column = identifier[0] if identifier else None

    if isinstance(operation, DeleteOperation):
        columns = [id_column]
    else:
        columns = _columns(batch.events, schema, id_column)

    for column in columns:
        if not _COLUMN_NAME.match(column):
            raise EncodingError(f"Field name '{column}' cannot be used as a CSV column.")

    rows = []
    for event in batch.events:
        mapped = schema.to_api_fields(event.data)
        if identifier:
            mapped[id_column] = identifier[1](event)
        rows.append(tuple(format_value(mapped.get(column, _ABSENT), column) for column in columns))

    output = StringIO()
    writer = csv.writer(output, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(columns)
    writer.writerows(rows)

    logger.debug(f"Framed {len(rows)} {batch.kind.value} rows with columns {columns}")
    return TabularPayload(columns=tuple(columns), rows=tuple(rows), csv_text=output.getvalue())
