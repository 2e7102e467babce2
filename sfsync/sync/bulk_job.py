# sfsync/sync/bulk_job.py
import asyncio
import logging
from typing import Dict, FrozenSet, List, NoReturn, Optional

from sfsync.core.config import settings
from sfsync.core.errors import BulkJobTimeoutError, FatalJobError, SalesforceApiError, SyncError, TransientNetworkError
from sfsync.core.models import BulkJob, JobState, Operation, OperationKind, RowResult, TabularPayload
from sfsync.salesforce.client import SalesforceApiClient
from sfsync.sync.correlator import merge_result_sets
from sfsync.sync.observer import BulkJobObserver, LoggingJobObserver
from sfsync.sync.retry import PollPolicy, RetryPolicy, Sleep

logger = logging.getLogger(settings.APP_NAME)

ALLOWED_TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    JobState.CREATED: frozenset({JobState.DATA_UPLOADED, JobState.FAILED, JobState.ABORTED}),
    JobState.DATA_UPLOADED: frozenset({JobState.SUBMITTED, JobState.FAILED, JobState.ABORTED}),
    JobState.SUBMITTED: frozenset({JobState.IN_PROGRESS, JobState.COMPLETED, JobState.FAILED, JobState.ABORTED}),
    JobState.IN_PROGRESS: frozenset({JobState.COMPLETED, JobState.FAILED, JobState.ABORTED}),
}

# Bulk API 2.0 job states as reported by GET /jobs/ingest/{id}
REMOTE_STATES: Dict[str, JobState] = {
    "UploadComplete": JobState.SUBMITTED,
    "InProgress": JobState.IN_PROGRESS,
    "JobComplete": JobState.COMPLETED,
    "Failed": JobState.FAILED,
    "Aborted": JobState.ABORTED,
}

_REMOTE_ERRORS = (TransientNetworkError, SalesforceApiError)


class BulkJobManager:
    """
    Drives one Bulk API 2.0 ingest job per call to `run`:
    create -> upload CSV -> close -> poll -> fetch per-row results.

    Upload, status reads and result reads are retried with the retry policy.
    Job creation and closing are not, and a job is never re-submitted: a
    timed-out or failed job surfaces as an error for the caller to handle.
    """

    def __init__(
        self,
        client: SalesforceApiClient,
        object_name: str,
        retry_policy: Optional[RetryPolicy] = None,
        poll_policy: Optional[PollPolicy] = None,
        observer: Optional[BulkJobObserver] = None,
        sleep: Sleep = asyncio.sleep,
        abort_on_timeout: bool = settings.BULK_ABORT_ON_TIMEOUT,
    ):
        self.client = client
        self.object_name = object_name
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.poll_policy = poll_policy or PollPolicy.from_settings()
        self.observer = observer or LoggingJobObserver()
        self.sleep = sleep
        self.abort_on_timeout = abort_on_timeout

    async def run(self, operation: Operation, payload: TabularPayload) -> List[RowResult]:
        job = await self._create_job(operation, payload)
        try:
            await self._upload(job, payload)
            await self._close(job)
            await self._wait_for_completion(job)
        except asyncio.CancelledError:
            # Remote cleanup is left to Salesforce job expiry.
            logger.warning(f"Bulk job {job.job_id} cancelled while in state {job.state.value}")
            if not job.state.is_terminal:
                job.error_message = "Cancelled"
                self._transition(job, JobState.ABORTED)
            raise
        return await self._fetch_results(job, payload)

    def _transition(self, job: BulkJob, new_state: JobState) -> None:
        if new_state == job.state:
            return
        if new_state not in ALLOWED_TRANSITIONS.get(job.state, frozenset()):
            raise RuntimeError(f"Illegal bulk job transition {job.state.value} -> {new_state.value} for job {job.job_id}")
        previous = job.state
        job.state = new_state
        job.history.append(new_state)
        self.observer.state_changed(job, previous)

    def _on_retry(self, job: Optional[BulkJob], step: str):
        return lambda attempt, error, delay: self.observer.retrying(job, step, attempt, error, delay)

    async def _abort_remote(self, job: BulkJob) -> None:
        try:
            await self.client.update_bulk_job_state(job.job_id, "Aborted")
            logger.info(f"Aborted bulk job {job.job_id} on Salesforce.")
        except SyncError as e:
            logger.error(f"Failed to abort bulk job {job.job_id}: {e}")

    async def _fail(self, job: BulkJob, step: str, error: Exception) -> NoReturn:
        self.observer.failed(job, step, error)
        job.error_message = f"Bulk job {step} failed: {error}"
        self._transition(job, JobState.FAILED)
        await self._abort_remote(job)
        raise FatalJobError(job.error_message, job.job_id) from error

    async def _create_job(self, operation: Operation, payload: TabularPayload) -> BulkJob:
        bulk_operation = OperationKind(operation.kind).bulk_operation
        external_id_field = operation.match.field if operation.kind == "upsert" else None
        try:
            info = await self.client.create_bulk_ingest_job(self.object_name, bulk_operation, external_id_field)
        except _REMOTE_ERRORS as e:
            self.observer.failed(None, "create", e)
            raise FatalJobError(f"Could not create bulk {bulk_operation} job for {self.object_name}: {e}") from e

        job_id = info.get("id")
        if not job_id:
            logger.error(f"Failed to create bulk job. Response: {info}")
            raise FatalJobError(f"Salesforce did not return a job id for the bulk {bulk_operation} job.")

        job = BulkJob(
            job_id=job_id,
            object_name=self.object_name,
            operation=bulk_operation,
            row_count=len(payload.rows),
            content_url=info.get("contentUrl")
            or f"services/data/{settings.SALESFORCE_API_VERSION}/jobs/ingest/{job_id}/batches",
        )
        logger.info(f"Bulk job created. ID: {job_id}, Operation: {bulk_operation}, Object: {self.object_name}, Rows: {job.row_count}")
        return job

    async def _upload(self, job: BulkJob, payload: TabularPayload) -> None:
        try:
            accepted = await self.retry_policy.call(
                lambda: self.client.upload_bulk_job_data(job.content_url, payload.csv_text),
                sleep=self.sleep,
                on_retry=self._on_retry(job, "upload"),
            )
        except _REMOTE_ERRORS as e:
            await self._fail(job, "upload", e)
        if not accepted:
            await self._fail(job, "upload", FatalJobError("Salesforce did not accept the CSV upload."))
        self._transition(job, JobState.DATA_UPLOADED)

    async def _close(self, job: BulkJob) -> None:
        try:
            await self.client.update_bulk_job_state(job.job_id, "UploadComplete")
        except _REMOTE_ERRORS as e:
            await self._fail(job, "close", e)
        self._transition(job, JobState.SUBMITTED)

    async def _wait_for_completion(self, job: BulkJob) -> None:
        policy = self.poll_policy
        elapsed = 0.0
        interval = policy.interval
        while True:
            if elapsed >= policy.max_wait:
                await self._time_out(job, elapsed)
            interval = min(interval, policy.max_wait - elapsed)
            await self.sleep(interval)
            elapsed += interval

            try:
                info = await self.retry_policy.call(
                    lambda: self.client.get_bulk_job_info(job.job_id),
                    sleep=self.sleep,
                    on_retry=self._on_retry(job, "status check"),
                )
            except _REMOTE_ERRORS as e:
                await self._fail(job, "status check", e)

            remote_state = info.get("state", "")
            self.observer.polled(job, remote_state, elapsed)
            state = REMOTE_STATES.get(remote_state)
            if state is JobState.COMPLETED:
                self._transition(job, JobState.COMPLETED)
                return
            if state in (JobState.FAILED, JobState.ABORTED):
                job.error_message = info.get("errorMessage") or f"Bulk job ended in state {remote_state}"
                self._transition(job, state)
                self.observer.failed(job, "processing", FatalJobError(job.error_message, job.job_id))
                raise FatalJobError(job.error_message, job.job_id)
            if state is JobState.IN_PROGRESS:
                self._transition(job, JobState.IN_PROGRESS)
            interval = policy.next_interval(interval)

    async def _time_out(self, job: BulkJob, elapsed: float) -> NoReturn:
        job.error_message = f"Bulk job {job.job_id} did not finish within {elapsed:.0f}s"
        self._transition(job, JobState.ABORTED)
        error = BulkJobTimeoutError(job.error_message, job.job_id)
        self.observer.failed(job, "polling", error)
        if self.abort_on_timeout:
            await self._abort_remote(job)
        raise error

    async def _fetch_results(self, job: BulkJob, payload: TabularPayload) -> List[RowResult]:
        fetch = {
            "successful": self.client.get_bulk_job_successful_results,
            "failed": self.client.get_bulk_job_failed_results,
            "unprocessed": self.client.get_bulk_job_unprocessed_records,
        }
        result_sets: Dict[str, str] = {}
        for name, getter in fetch.items():
            try:
                result_sets[name] = await self.retry_policy.call(
                    lambda: getter(job.job_id),
                    sleep=self.sleep,
                    on_retry=self._on_retry(job, f"fetch {name} results"),
                )
            except _REMOTE_ERRORS as e:
                self.observer.failed(job, f"fetch {name} results", e)
                raise FatalJobError(f"Could not read {name} results of bulk job {job.job_id}: {e}", job.job_id) from e

        rows = merge_result_sets(payload, result_sets["successful"], result_sets["failed"], result_sets["unprocessed"])
        failures = sum(1 for row in rows if not row.success)
        logger.info(f"Bulk job {job.job_id} finished: {len(rows) - failures} succeeded, {failures} failed")
        return rows
