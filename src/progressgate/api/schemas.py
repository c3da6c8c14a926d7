"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from progressgate.models import ProgressRecord, ResultAvailability, TaskProgressView
from progressgate.progress.state import is_settled


# ============================================================================
# Shared schemas
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class SourceSchema(BaseModel):
    """Source link attached to a progress record."""

    url: str = Field(..., min_length=1)
    title: Optional[str] = None


# ============================================================================
# Progress (UI side)
# ============================================================================


class ProgressRecordResponse(BaseModel):
    """One progress record as shown to the UI."""

    id: str
    label: str
    created_at: datetime
    sources: list[SourceSchema]
    settled: bool

    @classmethod
    def from_record(cls, record: ProgressRecord) -> "ProgressRecordResponse":
        return cls(
            id=record.id,
            label=record.label,
            created_at=record.created_at,
            sources=[SourceSchema(url=s.url, title=s.title) for s in record.sources],
            settled=is_settled(record),
        )


class TaskProgressResponse(BaseModel):
    """Progress view for a task."""

    task_id: str
    records: list[ProgressRecordResponse]
    expected_total: int
    percentage: int = Field(..., ge=0, le=100)
    is_complete: bool
    result_available: bool
    subscription_status: str
    subscription_error: Optional[str] = None

    @classmethod
    def from_view(
        cls,
        view: TaskProgressView,
        availability: ResultAvailability,
    ) -> "TaskProgressResponse":
        return cls(
            task_id=view.task_id,
            records=[ProgressRecordResponse.from_record(r) for r in view.records],
            expected_total=view.expected_total,
            percentage=view.percentage,
            is_complete=view.is_complete,
            result_available=availability.available,
            subscription_status=view.subscription_status.value,
            subscription_error=view.subscription_error,
        )


class RefreshResponse(BaseModel):
    """Manual refresh outcome."""

    refreshed: bool
    progress: TaskProgressResponse


class StopTrackingResponse(BaseModel):
    task_id: str
    stopped: bool


class ResultAvailabilityResponse(BaseModel):
    """Result availability, independent of progress percentage."""

    task_id: str
    available: bool
    observed_at: Optional[datetime] = None


class TaskResultResponse(BaseModel):
    """Stored final result for a task."""

    result_id: str
    task_id: str
    owner_id: Optional[str] = None
    content: dict[str, Any]
    created_at: datetime


class OwnerResultsResponse(BaseModel):
    owner_id: str
    task_ids: list[str]


# ============================================================================
# Executor side
# ============================================================================


class ReportProgressRequest(BaseModel):
    """Progress record written by the task executor."""

    label: str = Field(..., description="Topic or state name")
    sources: list[SourceSchema] = Field(default_factory=list)
    record_id: Optional[str] = Field(None, description="Record id (generated if absent)")
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None


class UpdateSourcesRequest(BaseModel):
    """Replace the sources of an existing record."""

    sources: list[SourceSchema]


class ReportProgressResponse(BaseModel):
    record_id: str
    task_id: str
    created_at: datetime


class StoreResultRequest(BaseModel):
    """Final result written by the task executor."""

    content: dict[str, Any] = Field(default_factory=dict)
    owner_id: Optional[str] = None
    result_id: Optional[str] = None


class StoreResultResponse(BaseModel):
    result_id: str
    task_id: str


# ============================================================================
# Feedback
# ============================================================================


class FeedbackStatusResponse(BaseModel):
    task_id: str
    submitted: bool


class SubmitFeedbackRequest(BaseModel):
    """Feedback payload. Rating bounds are checked by the tracker."""

    rating: int
    comment: Optional[str] = Field(None, max_length=5000)


# ============================================================================
# Cache
# ============================================================================


class CacheStatsResponse(BaseModel):
    total_entries: int
    valid_entries: int
    expired_entries: int
    by_entity: dict[str, int]


class CacheClearResponse(BaseModel):
    removed: int
