"""ProgressGate data models."""

from progressgate.models.enums import ChangeType, SubscriptionStatus
from progressgate.models.record import ProgressRecord, Source
from progressgate.models.change import Change
from progressgate.models.feedback import Feedback
from progressgate.models.view import ResultAvailability, TaskProgressView

__all__ = [
    "Change",
    "ChangeType",
    "Feedback",
    "ProgressRecord",
    "ResultAvailability",
    "Source",
    "SubscriptionStatus",
    "TaskProgressView",
]
