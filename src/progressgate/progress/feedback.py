"""Feedback state tracker."""

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progressgate.config import settings
from progressgate.db.base import get_privileged_session, get_session
from progressgate.db.repositories import FeedbackRepository
from progressgate.errors import InvalidFeedbackError
from progressgate.models import Feedback
from progressgate.observability.metrics import metrics
from progressgate.utils.timeouts import bounded

logger = logging.getLogger("progressgate.progress.feedback")

MIN_RATING = 1
MAX_RATING = 5


class FeedbackTracker:
    """
    One-time feedback per task, with a primary and a fallback write path.

    ``has_submitted`` always asks the store. Once a submit succeeds on
    either path the task is remembered as submitted and later submits
    return True without writing.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        privileged_session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.session_factory = session_factory
        self.privileged_session_factory = privileged_session_factory
        self._submitted: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}

    def submitted_locally(self, task_id: str) -> bool:
        return task_id in self._submitted

    async def has_submitted(self, task_id: str) -> bool:
        """Authoritative count query. Store errors propagate."""
        async with get_session(self.session_factory) as session:
            count = await bounded(
                FeedbackRepository(session).count(task_id),
                settings.fetch_timeout_seconds,
                f"feedback count for task {task_id}",
            )
        if count > 0:
            self._submitted.add(task_id)
        return count > 0

    @staticmethod
    def build(
        task_id: str,
        rating: int,
        comment: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> Feedback:
        """Validate a feedback payload. Raises InvalidFeedbackError."""
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise InvalidFeedbackError("Rating must be an integer")
        if not MIN_RATING <= rating <= MAX_RATING:
            raise InvalidFeedbackError(
                f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}"
            )
        if comment is not None:
            comment = comment.strip() or None
        try:
            return Feedback(task_id=task_id, rating=rating, comment=comment, owner_id=owner_id)
        except ValidationError as e:
            raise InvalidFeedbackError(str(e)) from e

    async def submit(
        self,
        task_id: str,
        rating: int,
        comment: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> bool:
        """
        Submit feedback once.

        Returns True when feedback is recorded (now or earlier) and False
        when both write paths failed. Invalid payloads raise
        InvalidFeedbackError before any write.
        """
        feedback = self.build(task_id, rating, comment, owner_id)

        if task_id in self._submitted:
            return True

        lock = self._locks.setdefault(task_id, asyncio.Lock())
        async with lock:
            submitted = await self._submit_once(feedback)
        if submitted:
            # Later submits return before locking
            self._locks.pop(task_id, None)
            return True

        metrics.inc_counter("feedback.failed")
        logger.error(f"Feedback submission failed on both paths for task {task_id}")
        return False

    async def _submit_once(self, feedback: Feedback) -> bool:
        task_id = feedback.task_id
        if task_id in self._submitted:
            return True
        try:
            if await self.has_submitted(task_id):
                logger.info(f"Feedback already recorded for task {task_id}")
                return True
        except Exception as e:
            logger.warning(f"Feedback pre-check failed for task {task_id}: {e}")

        if await self._write_primary(feedback) or await self._write_fallback(feedback):
            self._submitted.add(task_id)
            metrics.inc_counter("feedback.submitted")
            return True
        return False

    async def _write_primary(self, feedback: Feedback) -> bool:
        try:
            async with get_session(self.session_factory) as session:
                await bounded(
                    FeedbackRepository(session).create(feedback),
                    settings.fetch_timeout_seconds,
                    f"feedback write for task {feedback.task_id}",
                )
            return True
        except Exception as e:
            metrics.inc_counter("feedback.primary.failed")
            logger.warning(
                f"Primary feedback write failed for task {feedback.task_id}, "
                f"trying fallback: {e}"
            )
            return False

    async def _write_fallback(self, feedback: Feedback) -> bool:
        try:
            async with get_privileged_session(self.privileged_session_factory) as session:
                await bounded(
                    FeedbackRepository(session).create(feedback),
                    settings.fetch_timeout_seconds,
                    f"fallback feedback write for task {feedback.task_id}",
                )
            return True
        except IntegrityError:
            # The primary write may have landed before its error surfaced
            try:
                return await self.has_submitted(feedback.task_id)
            except Exception as e:
                logger.error(f"Feedback re-check failed for task {feedback.task_id}: {e}")
                return False
        except Exception as e:
            logger.error(
                f"Fallback feedback write failed for task {feedback.task_id}: {e}",
                exc_info=True,
            )
            return False
