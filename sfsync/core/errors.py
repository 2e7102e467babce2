# sfsync/core/errors.py
from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by the synchronization engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(SyncError):
    """
    The request cannot be executed as configured: missing mandatory field,
    missing matcher for a non-create operation, empty or invalid input.
    Always raised before any network call and never retried.
    """


class EncodingError(SyncError):
    """A value cannot be framed into the Bulk API CSV payload."""


class TransientNetworkError(SyncError):
    """Connection failure, timeout, throttling or 5xx from Salesforce. Safe to retry on idempotent calls."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SalesforceApiError(SyncError):
    """Non-retryable error response (4xx) from the Salesforce API."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"Salesforce API Error ({status_code}): {detail}")
        self.status_code = status_code
        self.detail = detail


class FatalJobError(SyncError):
    """A bulk job failed remotely or could not be created, uploaded, submitted or read back."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


class BulkJobTimeoutError(SyncError, TimeoutError):
    """The bulk job did not reach a terminal state within the configured poll budget."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


class RecordLookupError(SyncError):
    """Matching by custom fields found no record, or more than one."""
