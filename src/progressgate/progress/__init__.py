"""Task progress tracking."""

from progressgate.progress.feed import ChangeFeedSubscriber
from progressgate.progress.feedback import FeedbackTracker
from progressgate.progress.janitor import DebugRecordJanitor
from progressgate.progress.markers import is_pollution, is_terminal
from progressgate.progress.projector import Projection, expected_total, project
from progressgate.progress.results import ResultAvailabilityMonitor
from progressgate.progress.snapshot import SnapshotReconciler
from progressgate.progress.state import MergeResult, TaskProgressState, is_settled
from progressgate.progress.tracker import (
    TaskProgressTracker,
    TrackerRegistry,
    get_tracker_registry,
    reset_tracker_registry,
)

__all__ = [
    "ChangeFeedSubscriber",
    "DebugRecordJanitor",
    "FeedbackTracker",
    "MergeResult",
    "Projection",
    "ResultAvailabilityMonitor",
    "SnapshotReconciler",
    "TaskProgressState",
    "TaskProgressTracker",
    "TrackerRegistry",
    "expected_total",
    "get_tracker_registry",
    "is_pollution",
    "is_settled",
    "is_terminal",
    "project",
    "reset_tracker_registry",
]
