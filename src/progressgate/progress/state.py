"""Per-task progress state."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from progressgate.models import (
    ChangeType,
    ProgressRecord,
    Source,
    SubscriptionStatus,
    TaskProgressView,
)
from progressgate.progress.markers import is_terminal
from progressgate.progress.projector import project

logger = logging.getLogger(__name__)


def is_settled(record: ProgressRecord) -> bool:
    """Superseded records and terminal records count as settled."""
    return record.settled or is_terminal(record.label)


@dataclass(frozen=True)
class MergeResult:
    applied: bool
    added_sources: tuple[Source, ...] = ()


class TaskProgressState:
    """
    Ordered progress records for one task.

    The push path (``merge``) and the pull path (``reconcile``) are the
    only mutators. Records are kept newest first by ``created_at``; ties go
    to the record delivered last. Readers get immutable views.

    Invariants:
    - at most one record (the head) is unsettled, unless terminal
    - percentage never decreases
    - is_complete never goes back to False
    """

    def __init__(self, task_id: str, expected_total: int):
        self.task_id = task_id
        self.expected_total = expected_total
        self._records: dict[str, ProgressRecord] = {}
        self._delivery_seq: dict[str, int] = {}
        self._next_seq = 0
        self._ordered: tuple[ProgressRecord, ...] = ()
        self._complete = False
        self._percentage = 0
        self._subscription_status = SubscriptionStatus.PENDING
        self._subscription_error: Optional[str] = None

    @property
    def records(self) -> tuple[ProgressRecord, ...]:
        return self._ordered

    @property
    def head(self) -> Optional[ProgressRecord]:
        return self._ordered[0] if self._ordered else None

    @property
    def percentage(self) -> int:
        return self._percentage

    @property
    def is_complete(self) -> bool:
        return self._complete

    @property
    def subscription_status(self) -> SubscriptionStatus:
        return self._subscription_status

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    # Push path

    def merge(
        self,
        event_type: ChangeType,
        payload: Union[ProgressRecord, str],
    ) -> MergeResult:
        """
        Apply one change feed event.

        ``payload`` is the incoming record for inserts and updates, and the
        record (or just its id) for deletes.
        """
        if event_type == ChangeType.INSERT:
            applied = self._insert(payload, may_take_head=True)
            result = MergeResult(applied=applied)
        elif event_type == ChangeType.UPDATE:
            result = self._update(payload)
        elif event_type == ChangeType.DELETE:
            record_id = payload if isinstance(payload, str) else payload.id
            result = MergeResult(applied=self._delete(record_id))
        else:
            raise ValueError(f"Unknown change type: {event_type}")

        if result.applied:
            self._refresh()
        return result

    def _sort_key(self, record: ProgressRecord) -> tuple:
        return (record.created_at, self._delivery_seq[record.id])

    def _insert(self, record: ProgressRecord, may_take_head: bool) -> bool:
        if record.id in self._records:
            return False

        current_head = max(self._records.values(), key=self._sort_key, default=None)
        self._delivery_seq[record.id] = self._next_seq
        self._next_seq += 1

        takes_head = current_head is None or record.created_at >= current_head.created_at
        if takes_head and may_take_head:
            if current_head is not None and not is_settled(current_head):
                self._records[current_head.id] = current_head.settle()
            self._records[record.id] = record.model_copy(update={"settled": False})
        else:
            # Late arrival: an older record never becomes the head
            self._records[record.id] = record.settle()

        if is_terminal(record.label):
            self._complete = True
        return True

    def _update(self, record: ProgressRecord) -> MergeResult:
        existing = self._records.get(record.id)
        if existing is None:
            logger.debug(f"Ignoring update for unknown record {record.id} (task {self.task_id})")
            return MergeResult(applied=False)
        self._records[record.id] = existing.merged_with(record)
        return MergeResult(applied=True, added_sources=tuple(record.added_sources(existing)))

    def _delete(self, record_id: str) -> bool:
        if self._records.pop(record_id, None) is None:
            return False
        self._delivery_seq.pop(record_id, None)
        return True

    # Pull path

    def reconcile(self, snapshot: Sequence[ProgressRecord]) -> int:
        """
        Union a newest-first snapshot into the local records.

        Tracked records keep their pushed fields and only gain sources the
        snapshot has. Missing records are inserted settled unless they
        are the snapshot's head. Returns the number of records inserted.
        """
        snapshot_head_id = snapshot[0].id if snapshot else None
        inserted = 0
        changed = False

        # Oldest first so the snapshot head is delivered last
        for record in reversed(snapshot):
            existing = self._records.get(record.id)
            if existing is not None:
                merged = existing.reconciled_with(record)
                if merged != existing:
                    self._records[record.id] = merged
                    changed = True
                continue
            if self._insert(record, may_take_head=record.id == snapshot_head_id):
                inserted += 1

        if inserted or changed:
            self._refresh()
        return inserted

    # Derived state

    def _refresh(self) -> None:
        ordered = sorted(self._records.values(), key=self._sort_key, reverse=True)
        for i, record in enumerate(ordered[1:], start=1):
            if not is_settled(record):
                ordered[i] = self._records[record.id] = record.settle()
        self._ordered = tuple(ordered)

        projection = project(self._ordered, self.expected_total, self._complete)
        if projection.is_complete:
            self._complete = True
        self._percentage = 100 if self._complete else max(self._percentage, projection.percentage)

    # Subscription status

    def mark_subscribed(self) -> None:
        self._subscription_status = SubscriptionStatus.SUBSCRIBED
        self._subscription_error = None

    def mark_subscription_failed(self, reason: str) -> None:
        self._subscription_status = SubscriptionStatus.FAILED
        self._subscription_error = reason

    def mark_closed(self) -> None:
        self._subscription_status = SubscriptionStatus.CLOSED

    def view(self) -> TaskProgressView:
        """Immutable snapshot for readers."""
        return TaskProgressView(
            task_id=self.task_id,
            records=self._ordered,
            expected_total=self.expected_total,
            percentage=self._percentage,
            is_complete=self._complete,
            subscription_status=self._subscription_status,
            subscription_error=self._subscription_error,
        )
