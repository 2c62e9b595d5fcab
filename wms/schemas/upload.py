"""Upload request and response schemas."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Lifecycle states of an upload job."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PROCESSING


class UploadProgress(BaseModel):
    """Progress record of one upload job."""

    job_id: str
    pipeline: str
    status: JobStatus = JobStatus.PROCESSING
    batch_id: str
    warehouse_id: Optional[int] = None
    filename: Optional[str] = None
    file_type: Optional[str] = None
    file_size: int = 0
    total: int = 0
    processed: int = 0
    success_count: int = 0
    error_count: int = 0
    duplicate_count: int = 0
    cross_warehouse_count: int = 0
    in_batch_duplicate_count: int = 0
    skipped_count: int = 0
    start_time: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    class Config:
        from_attributes = True


class UploadAcceptedResponse(BaseModel):
    """Response after an upload was accepted for background processing."""

    job_id: str
    batch_id: str
    status: str = JobStatus.PROCESSING.value
    file_type: str
    file_size: int
    message: str = "File uploaded successfully, processing in background"


class CancelResponse(BaseModel):
    """Response after cancelling an upload."""

    job_id: str
    message: str = "Upload cancelled"


class BatchSummary(BaseModel):
    """Rows written by one upload batch."""

    batch_id: str
    count: int
    last_updated: Optional[datetime] = None


class BatchDeleteResponse(BaseModel):
    """Response after deleting every row of a batch."""

    batch_id: str
    count: int
    message: str = "Batch deleted"


class MultiEntryRequest(BaseModel):
    """Several rows entered by hand, screened the same way as a bulk upload."""

    warehouse_id: Optional[int] = None
    created_by: Optional[int] = None
    created_user_name: Optional[str] = None
    entries: List[Dict[str, Any]] = Field(..., min_length=1)


class MultiEntryResult(BaseModel):
    """Outcome for one entered row."""

    wsn: Optional[str] = None
    status: str
    message: Optional[str] = None
    highlight: bool = False


class MultiEntryResponse(BaseModel):
    """Outcome of a multi-entry request."""

    timestamp: datetime
    success_count: int
    total_count: int
    results: List[MultiEntryResult]
