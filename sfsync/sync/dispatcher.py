# sfsync/sync/dispatcher.py
import asyncio
import logging
from typing import List, Optional, Sequence, Tuple, Union

from sfsync.core.config import settings
from sfsync.core.errors import (
    ConfigurationError, EncodingError, RecordLookupError, SalesforceApiError, SyncError, TransientNetworkError,
)
from sfsync.core.models import (
    Batch, BatchOptions, CustomFieldMatch, Event, MatchConfig, Operation, OperationKind,
    SyncResult, TabularPayload,
)
from sfsync.salesforce import operations
from sfsync.salesforce.client import SalesforceApiClient
from sfsync.sync.batcher import partition
from sfsync.sync.bulk_job import BulkJobManager
from sfsync.sync.correlator import correlate, fail_all
from sfsync.sync.framer import frame
from sfsync.sync.matcher import RECORD_ID_FIELD, external_id_value, resolve_operation, validate_required_fields
from sfsync.sync.objects import ObjectSchema, get_object_schema
from sfsync.sync.observer import BulkJobObserver, LoggingJobObserver
from sfsync.sync.retry import PollPolicy, RetryPolicy, Sleep

logger = logging.getLogger(settings.APP_NAME)

_SINGLE_RECORD_ERRORS = (SalesforceApiError, TransientNetworkError, RecordLookupError)

# A batch ready to run: its resolved operation, and either a framed payload or the reason it cannot be framed.
Plan = Tuple[Batch, Operation, Union[TabularPayload, EncodingError, None]]


class OperationDispatcher:
    """
    Entry point of the sync engine. Validates the whole input before touching
    the network, then sends either one REST call per event or one bulk job per
    batch, and returns one SyncResult per input event in input order.
    """

    def __init__(
        self,
        client: SalesforceApiClient,
        object_name: str,
        schema: Optional[ObjectSchema] = None,
        retry_policy: Optional[RetryPolicy] = None,
        poll_policy: Optional[PollPolicy] = None,
        observer: Optional[BulkJobObserver] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.object_name = object_name
        self.schema = schema or get_object_schema(object_name)
        self.retry_policy = retry_policy
        self.poll_policy = poll_policy
        self.observer = observer
        self.sleep = sleep

    async def dispatch(
        self,
        events: Sequence[Event],
        operation: Optional[OperationKind] = None,
        match_config: Optional[MatchConfig] = None,
        batch_options: Optional[BatchOptions] = None,
    ) -> List[SyncResult]:
        match_config = match_config or MatchConfig()
        batch_options = batch_options or BatchOptions()
        if not events:
            raise ConfigurationError("No events to synchronize.")

        stamped = [
            event if event.operation or operation is None else event.model_copy(update={"operation": operation})
            for event in events
        ]
        bulk = len(stamped) > 1 and batch_options.enable_batching
        batch_size = min(batch_options.batch_size, settings.BULK_MAX_BATCH_SIZE)
        batches = partition(stamped, batch_size)
        if not bulk:
            # One REST call per event, so each event picks its own matcher.
            batches = [
                Batch(kind=batch.kind, events=(event,), offset=batch.offset + i)
                for batch in batches
                for i, event in enumerate(batch.events)
            ]

        # Pre-flight: every batch is resolved and checked before anything is sent.
        plans: List[Plan] = []
        for batch in batches:
            resolved = resolve_operation(
                batch.kind, match_config, batch.events, bulk=bulk, offset=batch.offset, schema=self.schema
            )
            validate_required_fields(batch.kind, batch.events, self.schema, offset=batch.offset)
            payload = None
            if bulk:
                try:
                    payload = frame(batch, resolved, self.schema)
                except EncodingError as e:
                    logger.error(f"Batch at offset {batch.offset} ({len(batch)} {batch.kind.value} events) cannot be framed: {e}")
                    payload = e
            plans.append((batch, resolved, payload))

        logger.info(
            f"Synchronizing {len(stamped)} event(s) to {self.object_name} in {len(plans)} batch(es) "
            f"via the {'bulk' if bulk else 'single-record'} path"
        )
        if bulk:
            return await self._run_bulk(plans, batch_options)
        return await self._run_single(plans)

    # --- Single-record path ---

    async def _run_single(self, plans: Sequence[Plan]) -> List[SyncResult]:
        results: List[SyncResult] = []
        for batch, resolved, _ in plans:
            (event,) = batch.events
            results.append(await self._sync_one(batch.offset, batch.kind, resolved, event))
        return results

    async def _target_id(self, event: Event, resolved: Operation) -> str:
        if isinstance(resolved.match, CustomFieldMatch):
            return await operations.resolve_record_id(
                self.client, self.object_name, event.match_values, resolved.match.operator
            )
        return event.record_id

    async def _sync_one(self, index: int, kind: OperationKind, resolved: Operation, event: Event) -> SyncResult:
        data = self.schema.to_api_fields(event.data)
        try:
            if kind is OperationKind.CREATE:
                record_id = await operations.create_record(self.client, self.object_name, data)
                return SyncResult(index=index, operation=kind, success=True, remote_id=record_id, created=True)
            if kind is OperationKind.UPSERT:
                field = resolved.match.field
                record_id, created = await operations.upsert_record(
                    self.client, self.object_name, field, external_id_value(event, field, self.schema), data
                )
                return SyncResult(index=index, operation=kind, success=True, remote_id=record_id, created=created)

            record_id = await self._target_id(event, resolved)
            if kind is OperationKind.UPDATE:
                data.pop(RECORD_ID_FIELD, None)
                await operations.update_record(self.client, self.object_name, record_id, data)
            else:
                await operations.delete_record(self.client, self.object_name, record_id)
            return SyncResult(index=index, operation=kind, success=True, remote_id=record_id, created=False)
        except _SINGLE_RECORD_ERRORS as e:
            logger.error(f"{kind.value} of {self.object_name} event {index} failed: {e}")
            return SyncResult(index=index, operation=kind, success=False, error_message=e.message)

    # --- Bulk path ---

    def _job_manager(self, batch_options: BatchOptions) -> BulkJobManager:
        observer = self.observer or LoggingJobObserver(verbose=batch_options.advanced_logging)
        return BulkJobManager(
            self.client,
            self.object_name,
            retry_policy=self.retry_policy,
            poll_policy=self.poll_policy,
            observer=observer,
            sleep=self.sleep,
        )

    async def _run_bulk(self, plans: Sequence[Plan], batch_options: BatchOptions) -> List[SyncResult]:
        manager = self._job_manager(batch_options)
        semaphore = asyncio.Semaphore(batch_options.max_concurrent_jobs)

        async def run_batch(plan: Plan) -> List[SyncResult]:
            batch, resolved, payload = plan
            if isinstance(payload, EncodingError):
                return fail_all(batch, payload.message)
            async with semaphore:
                try:
                    rows = await manager.run(resolved, payload)
                    return correlate(batch, rows)
                except SyncError as e:
                    return fail_all(batch, e.message)
                except Exception as e:
                    logger.error(
                        f"Unexpected error in bulk batch at offset {batch.offset} ({len(batch)} events): {e}", exc_info=True
                    )
                    return fail_all(batch, f"Unexpected error: {e.__class__.__name__}: {e}")

        per_batch = await asyncio.gather(*(run_batch(plan) for plan in plans))
        results = [result for batch_results in per_batch for result in batch_results]
        failures = sum(1 for result in results if not result.success)
        logger.info(f"Bulk sync of {len(results)} {self.object_name} event(s) finished with {failures} failure(s)")
        return results


async def sync_records(
    client: SalesforceApiClient,
    object_name: str,
    events: Sequence[Event],
    operation: Optional[OperationKind] = None,
    match_config: Optional[MatchConfig] = None,
    batch_options: Optional[BatchOptions] = None,
) -> List[SyncResult]:
    """Synchronizes `events` into `object_name`, returning one result per event in input order."""
    dispatcher = OperationDispatcher(client, object_name)
    return await dispatcher.dispatch(events, operation, match_config, batch_options)
