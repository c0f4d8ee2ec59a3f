"""Import job Pydantic v2 request/response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from plate_registry.schemas.common import PaginationMeta


class ImportJobResponse(BaseModel):
    """Import job status and progress counters."""

    id: UUID
    office_id: int
    file_name: str | None = None
    mode: str
    status: str
    total_rows: int = Field(description="Rows in the file, or -1 while still unknown")
    processed_rows: int
    inserted_rows: int
    rejected_rows: int
    skipped_rows: int
    batches_committed: int
    failure_reason: str | None = None
    error_message: str | None = None
    triggered_by: UUID | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaginatedImportJobResponse(BaseModel):
    """Paginated list of import jobs."""

    items: list[ImportJobResponse]
    pagination: PaginationMeta


class ImportRunResponse(BaseModel):
    """Result of an import that ran within the request."""

    job: ImportJobResponse
    error: str | None = Field(default=None, description="Fatal error, or null when the import completed")
    duplicate_in_file: int = 0
    duplicate_in_store: int = 0
    concurrent_conflict: int = 0


class CancelResponse(BaseModel):
    """Acknowledgement of a cancellation request."""

    job_id: UUID
    cancel_requested: bool
    detail: str
