# sfsync/core/schemas.py
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional

from sfsync.core.config import settings
from sfsync.core.models import BatchOptions, Event, MatchConfig, OperationKind, SyncResult

# --- Request Schemas ---

class SyncRequest(BaseModel):
    operation: Optional[OperationKind] = Field(None, description="Operation applied to every event that does not name its own.")
    events: List[Event] = Field(..., min_length=1, description="Records to synchronize, in order.")
    match_field: Optional[str] = Field(None, description="External ID field for upsert. 'Id' forces matching on the record Id.")
    match_operator: str = Field("OR", description="How match values combine when a record is looked up: 'OR' or 'AND'.")
    enable_batching: bool = Field(False, description="Send multiple events through Bulk API 2.0 jobs instead of one REST call each.")
    batch_size: int = Field(settings.BULK_BATCH_SIZE, ge=1, description=f"Maximum records per bulk job, capped at {settings.BULK_MAX_BATCH_SIZE}.")
    max_concurrent_jobs: int = Field(settings.BULK_MAX_CONCURRENT_JOBS, ge=1)
    advanced_logging: bool = Field(False, description="Log every bulk job state change at INFO level.")

    @field_validator("match_operator")
    @classmethod
    def match_operator_must_be_valid(cls, v: str) -> str:
        op = v.upper()
        if op not in ("OR", "AND"):
            raise ValueError("match_operator must be 'OR' or 'AND'")
        return op

    def match_config(self) -> MatchConfig:
        return MatchConfig(match_field=self.match_field, match_operator=self.match_operator)

    def batch_options(self) -> BatchOptions:
        return BatchOptions(
            enable_batching=self.enable_batching,
            batch_size=self.batch_size,
            max_concurrent_jobs=self.max_concurrent_jobs,
            advanced_logging=self.advanced_logging,
        )


# --- Response Schemas ---

class SyncResultDetail(BaseModel):
    index: int
    operation: OperationKind
    success: bool
    id: Optional[str] = None
    created: Optional[bool] = None
    errors: Optional[List[Dict[str, Any]]] = Field(None, description="Errors reported for this record.")

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResultDetail":
        return cls(
            index=result.index,
            operation=result.operation,
            success=result.success,
            id=result.remote_id,
            created=result.created,
            errors=[{"message": result.error_message}] if result.error_message else None,
        )


class SyncResponse(BaseModel):
    success: bool
    message: str
    total: int
    succeeded: int
    failed: int
    results: List[SyncResultDetail]
