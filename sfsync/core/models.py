# sfsync/core/models.py
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from sfsync.core.config import settings

# Domain models for the synchronization engine.
# Events and batches are created per invocation and never persisted.


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"

    @property
    def bulk_operation(self) -> str:
        """Operation name understood by the Bulk API 2.0 ingest endpoint."""
        return "insert" if self is OperationKind.CREATE else self.value


class Event(BaseModel):
    """One outbound record. Identity is its position in the caller's input."""
    model_config = ConfigDict(frozen=True)

    operation: Optional[OperationKind] = None
    data: Dict[str, Any] = Field(default_factory=dict, description="Field values; None means 'clear this field'.")
    record_id: Optional[str] = Field(None, description="Salesforce record Id targeted by update/delete.")
    external_id_field: Optional[str] = Field(None, description="External ID field used to upsert this record.")
    external_id_value: Optional[str] = None
    match_values: Dict[str, Any] = Field(default_factory=dict, description="Field values used to look up the record when no Id is known.")


# --- Match strategies ---

class RecordIdMatch(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["record_id"] = "record_id"


class ExternalIdMatch(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["external_id"] = "external_id"
    field: str = Field(..., min_length=1)


class CustomFieldMatch(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["custom_field"] = "custom_field"
    operator: Literal["OR", "AND"] = "OR"


MatchStrategy = Annotated[Union[RecordIdMatch, ExternalIdMatch, CustomFieldMatch], Field(discriminator="kind")]
TargetMatch = Annotated[Union[RecordIdMatch, CustomFieldMatch], Field(discriminator="kind")]


# --- Operations ---
# One variant per operation kind; each variant carries exactly the matcher it needs.

class CreateOperation(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["create"] = "create"


class UpdateOperation(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["update"] = "update"
    match: TargetMatch


class UpsertOperation(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["upsert"] = "upsert"
    match: ExternalIdMatch


class DeleteOperation(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["delete"] = "delete"
    match: TargetMatch


Operation = Annotated[
    Union[CreateOperation, UpdateOperation, UpsertOperation, DeleteOperation],
    Field(discriminator="kind"),
]


class MatchConfig(BaseModel):
    match_field: Optional[str] = Field(None, description="External ID field for upsert. 'Id' forces matching on the record Id.")
    match_operator: Literal["OR", "AND"] = Field("OR", description="How match values combine when looking a record up.")


class BatchOptions(BaseModel):
    enable_batching: bool = False
    batch_size: int = Field(default_factory=lambda: settings.BULK_BATCH_SIZE, ge=1)
    max_concurrent_jobs: int = Field(default_factory=lambda: settings.BULK_MAX_CONCURRENT_JOBS, ge=1)
    advanced_logging: bool = False


class Batch(BaseModel):
    """Consecutive events sharing one operation, no larger than the configured maximum."""
    model_config = ConfigDict(frozen=True)

    kind: OperationKind
    events: Tuple[Event, ...] = Field(..., min_length=1)
    offset: int = Field(0, ge=0, description="Index of the first event in the caller's input.")

    def __len__(self) -> int:
        return len(self.events)


class TabularPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    columns: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...]
    csv_text: str


class JobState(str, Enum):
    CREATED = "Created"
    DATA_UPLOADED = "DataUploaded"
    SUBMITTED = "Submitted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    ABORTED = "Aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.ABORTED)


class BulkJob(BaseModel):
    """Local view of a remote ingest job, owned by BulkJobManager."""
    job_id: str
    object_name: str
    operation: str
    state: JobState = JobState.CREATED
    row_count: int = 0
    content_url: Optional[str] = None
    error_message: Optional[str] = None
    history: List[JobState] = Field(default_factory=lambda: [JobState.CREATED])


class RowResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    remote_id: Optional[str] = None
    created: Optional[bool] = None
    error_message: Optional[str] = None


class SyncResult(BaseModel):
    """Outcome for one input event, paired by index."""
    model_config = ConfigDict(frozen=True)

    index: int
    operation: OperationKind
    success: bool
    remote_id: Optional[str] = None
    created: Optional[bool] = None
    error_message: Optional[str] = None
