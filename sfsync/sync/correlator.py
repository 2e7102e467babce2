# sfsync/sync/correlator.py
import csv
import logging
from collections import deque
from io import StringIO
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from sfsync.core.config import settings
from sfsync.core.errors import FatalJobError
from sfsync.core.models import Batch, RowResult, SyncResult, TabularPayload
from sfsync.sync.framer import NULL_SENTINEL
from sfsync.sync.matcher import RECORD_ID_FIELD

logger = logging.getLogger(settings.APP_NAME)

UNPROCESSED_MESSAGE = "Record was not processed before the bulk job ended."
MISSING_MESSAGE = "Record was not returned in the bulk job results."


def parse_csv_string_to_records(csv_string: str) -> List[Dict[str, str]]:
    if not csv_string or not csv_string.strip():
        return []
    reader = csv.DictReader(StringIO(csv_string))
    return [dict(row) for row in reader]


def _normalize_cell(column: str, value: Optional[str]) -> str:
    value = value or ""
    if value == NULL_SENTINEL:
        return ""
    if column == RECORD_ID_FIELD and len(value) == 18:
        # Salesforce echoes 18-character Ids; the first 15 are the case-sensitive Id.
        return value[:15]
    return value


def _row_key(columns: Sequence[str], values: Sequence[Optional[str]]) -> Tuple[str, ...]:
    return tuple(_normalize_cell(column, value) for column, value in zip(columns, values))


def merge_result_sets(
    payload: TabularPayload,
    successful_csv: str,
    failed_csv: str,
    unprocessed_csv: str = "",
) -> List[RowResult]:
    """
    Rebuilds one RowResult per submitted row, in submission order.

    The ingest API returns successes, failures and unprocessed rows as three
    separate CSV files, each echoing the submitted columns. The echoed values
    identify the submitted row; identical rows are claimed in submission order.
    """
    pending: Dict[Tuple[str, ...], Deque[int]] = {}
    for index, row in enumerate(payload.rows):
        pending.setdefault(_row_key(payload.columns, row), deque()).append(index)

    results: List[Optional[RowResult]] = [None] * len(payload.rows)

    def claim(record: Dict[str, str]) -> Optional[int]:
        key = _row_key(payload.columns, [record.get(column) for column in payload.columns])
        queue = pending.get(key)
        if not queue:
            logger.warning(f"Bulk result row does not match any submitted row: {key}")
            return None
        return queue.popleft()

    for record in parse_csv_string_to_records(successful_csv):
        index = claim(record)
        if index is not None:
            results[index] = RowResult(
                success=True,
                remote_id=record.get("sf__Id") or None,
                created=(record.get("sf__Created") or "").lower() == "true",
            )

    for record in parse_csv_string_to_records(failed_csv):
        index = claim(record)
        if index is not None:
            results[index] = RowResult(
                success=False,
                remote_id=record.get("sf__Id") or None,
                error_message=record.get("sf__Error") or "Unknown error",
            )

    for record in parse_csv_string_to_records(unprocessed_csv):
        index = claim(record)
        if index is not None:
            results[index] = RowResult(success=False, error_message=UNPROCESSED_MESSAGE)

    return [result or RowResult(success=False, error_message=MISSING_MESSAGE) for result in results]


def correlate(batch: Batch, rows: Sequence[RowResult]) -> List[SyncResult]:
    """Pairs row i of a completed job with event i of the batch."""
    if len(rows) != len(batch.events):
        raise FatalJobError(f"Bulk job returned {len(rows)} results for {len(batch.events)} records.")
    return [
        SyncResult(
            index=batch.offset + i,
            operation=batch.kind,
            success=row.success,
            remote_id=row.remote_id,
            created=row.created,
            error_message=row.error_message,
        )
        for i, row in enumerate(rows)
    ]


def fail_all(batch: Batch, reason: str) -> List[SyncResult]:
    """One failure per event, for jobs that never produced row results."""
    return [
        SyncResult(index=batch.offset + i, operation=batch.kind, success=False, error_message=reason)
        for i in range(len(batch.events))
    ]
