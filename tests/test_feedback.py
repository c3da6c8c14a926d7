"""
Feedback state tracker tests.
"""

import asyncio
import re

import pytest

from progressgate.db.repositories import FeedbackRepository
from progressgate.errors import InvalidFeedbackError
from progressgate.models.feedback import new_feedback_id
from progressgate.observability.metrics import metrics
from progressgate.progress.feedback import FeedbackTracker


class _UnavailableSession:
    async def __aenter__(self):
        raise ConnectionError("store unavailable")

    async def __aexit__(self, *exc_info):
        return False


def unavailable_factory():
    return _UnavailableSession()


async def _count(session_factory, task_id="task-1"):
    async with session_factory() as session:
        return await FeedbackRepository(session).count(task_id)


def test_feedback_id_format():
    assert re.fullmatch(r"feedback-\d{13}-[a-z0-9]{5}", new_feedback_id())


@pytest.mark.asyncio
async def test_submit_then_has_submitted(session_factory):
    tracker = FeedbackTracker(session_factory, session_factory)

    assert await tracker.has_submitted("task-1") is False
    assert await tracker.submit("task-1", 5, "Very useful") is True
    assert await tracker.has_submitted("task-1") is True
    assert await _count(session_factory) == 1


@pytest.mark.asyncio
async def test_submit_is_idempotent(session_factory):
    tracker = FeedbackTracker(session_factory, session_factory)

    assert await tracker.submit("task-1", 4) is True
    assert await tracker.submit("task-1", 2) is True
    assert await _count(session_factory) == 1


@pytest.mark.asyncio
async def test_concurrent_submits_write_once(session_factory):
    tracker = FeedbackTracker(session_factory, session_factory)

    results = await asyncio.gather(*(tracker.submit("task-1", 3) for _ in range(5)))

    assert results == [True] * 5
    assert await _count(session_factory) == 1
    assert tracker._locks == {}


@pytest.mark.asyncio
async def test_existing_feedback_in_store_is_respected(session_factory):
    await FeedbackTracker(session_factory, session_factory).submit("task-1", 5)

    other = FeedbackTracker(session_factory, session_factory)
    assert await other.submit("task-1", 1) is True
    assert await _count(session_factory) == 1


@pytest.mark.asyncio
async def test_fallback_path_used_when_primary_fails(session_factory):
    tracker = FeedbackTracker(unavailable_factory, session_factory)

    assert await tracker.submit("task-1", 4, "Good") is True
    assert tracker.submitted_locally("task-1") is True
    assert metrics.counter("feedback.primary.failed") == 1

    # Visible through the regular read path
    assert await FeedbackTracker(session_factory).has_submitted("task-1") is True


@pytest.mark.asyncio
async def test_both_paths_failing_returns_false():
    tracker = FeedbackTracker(unavailable_factory, unavailable_factory)

    assert await tracker.submit("task-1", 4) is False
    assert tracker.submitted_locally("task-1") is False
    assert "task-1" in tracker._locks
    assert metrics.counter("feedback.failed") == 1


@pytest.mark.asyncio
async def test_has_submitted_propagates_store_errors():
    tracker = FeedbackTracker(unavailable_factory)

    with pytest.raises(ConnectionError):
        await tracker.has_submitted("task-1")


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6, -1, True])
async def test_invalid_rating_rejected_before_write(session_factory, rating):
    tracker = FeedbackTracker(session_factory, session_factory)

    with pytest.raises(InvalidFeedbackError):
        await tracker.submit("task-1", rating)
    assert await _count(session_factory) == 0


@pytest.mark.asyncio
async def test_blank_comment_is_dropped(session_factory):
    tracker = FeedbackTracker(session_factory, session_factory)
    feedback = tracker.build("task-1", 3, "   ")

    assert feedback.comment is None
    assert feedback.rating == 3
