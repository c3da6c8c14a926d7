"""Read-only aggregates handed to the presentation collaborator."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from progressgate.models.enums import SubscriptionStatus
from progressgate.models.record import ProgressRecord


class TaskProgressView(BaseModel):
    """Immutable snapshot of one task's progress."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    records: tuple[ProgressRecord, ...] = ()
    expected_total: int = Field(ge=4)
    percentage: int = Field(ge=0, le=100)
    is_complete: bool = False
    subscription_status: SubscriptionStatus = SubscriptionStatus.PENDING
    subscription_error: Optional[str] = None

    @property
    def head(self) -> Optional[ProgressRecord]:
        return self.records[0] if self.records else None


class ResultAvailability(BaseModel):
    """Whether the final result entity for a task exists."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    available: bool = False
    observed_at: Optional[datetime] = None
