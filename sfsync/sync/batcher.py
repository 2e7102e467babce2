# sfsync/sync/batcher.py
from typing import List, Optional, Sequence, Tuple

from sfsync.core.errors import ConfigurationError
from sfsync.core.models import Batch, Event, OperationKind

SUPPORTED_OPERATIONS = frozenset(OperationKind)


def _batch_key(event: Event, index: int) -> Tuple[OperationKind, Optional[str]]:
    if event.operation is None:
        raise ConfigurationError(f"Event {index} has no operation.")
    if event.operation not in SUPPORTED_OPERATIONS:
        raise ConfigurationError(f"Event {index} has unsupported operation '{event.operation}'.")
    return event.operation, event.external_id_field


def partition(events: Sequence[Event], max_size: int) -> List[Batch]:
    """
    Splits events into runs of consecutive events with the same operation
    (and external ID field), cutting runs longer than `max_size`. Input order
    is kept within and across batches; operations are never reordered because
    each ingest job accepts a single operation.
    """
    if not events:
        raise ConfigurationError("Cannot sync an empty list of events.")
    if max_size < 1:
        raise ConfigurationError(f"Batch size must be at least 1, got {max_size}.")

    batches: List[Batch] = []
    run: List[Event] = []
    run_key = None
    run_start = 0
    for index, event in enumerate(events):
        key = _batch_key(event, index)
        if run and (key != run_key or len(run) == max_size):
            batches.append(Batch(kind=run_key[0], events=tuple(run), offset=run_start))
            run = []
        if not run:
            run_key, run_start = key, index
        run.append(event)
    batches.append(Batch(kind=run_key[0], events=tuple(run), offset=run_start))
    return batches
