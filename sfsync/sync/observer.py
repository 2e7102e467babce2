# sfsync/sync/observer.py
import logging
from typing import Any, Dict, List, Optional, Tuple

from sfsync.core.config import settings
from sfsync.core.models import BulkJob, JobState


class BulkJobObserver:
    """Receives bulk job lifecycle notifications. The base class ignores them."""

    def state_changed(self, job: BulkJob, previous: JobState) -> None:
        pass

    def polled(self, job: BulkJob, remote_state: str, elapsed: float) -> None:
        pass

    def retrying(self, job: Optional[BulkJob], step: str, attempt: int, error: BaseException, delay: float) -> None:
        pass

    def failed(self, job: Optional[BulkJob], step: str, error: BaseException) -> None:
        pass


class LoggingJobObserver(BulkJobObserver):
    """
    Writes the lifecycle to the application logger. Tracing goes out at DEBUG
    unless `verbose` is set, in which case it is promoted to INFO. Retries and
    failures are always logged.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, verbose: bool = False):
        self.logger = logger or logging.getLogger(settings.APP_NAME)
        self.trace_level = logging.INFO if verbose else logging.DEBUG

    def state_changed(self, job: BulkJob, previous: JobState) -> None:
        self.logger.log(
            self.trace_level,
            f"Bulk job {job.job_id} ({job.operation} {job.object_name}, {job.row_count} rows): {previous.value} -> {job.state.value}",
        )

    def polled(self, job: BulkJob, remote_state: str, elapsed: float) -> None:
        self.logger.log(self.trace_level, f"Bulk job {job.job_id} remote state {remote_state} after {elapsed:.1f}s")

    def retrying(self, job: Optional[BulkJob], step: str, attempt: int, error: BaseException, delay: float) -> None:
        job_ref = job.job_id if job else "(not created)"
        self.logger.warning(f"Bulk job {job_ref}: {step} attempt {attempt} failed ({error}). Retrying in {delay:.1f}s")

    def failed(self, job: Optional[BulkJob], step: str, error: BaseException) -> None:
        job_ref = job.job_id if job else "(not created)"
        self.logger.error(f"Bulk job {job_ref}: {step} failed: {error}")


class RecordingJobObserver(BulkJobObserver):
    """Keeps every notification in memory."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def state_changed(self, job: BulkJob, previous: JobState) -> None:
        self.events.append(("state_changed", {"job_id": job.job_id, "from": previous, "to": job.state}))

    def polled(self, job: BulkJob, remote_state: str, elapsed: float) -> None:
        self.events.append(("polled", {"job_id": job.job_id, "remote_state": remote_state, "elapsed": elapsed}))

    def retrying(self, job: Optional[BulkJob], step: str, attempt: int, error: BaseException, delay: float) -> None:
        self.events.append(("retrying", {"step": step, "attempt": attempt, "delay": delay}))

    def failed(self, job: Optional[BulkJob], step: str, error: BaseException) -> None:
        self.events.append(("failed", {"step": step, "error": str(error)}))

    def transitions(self) -> List[JobState]:
        return [details["to"] for name, details in self.events if name == "state_changed"]
