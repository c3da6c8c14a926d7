"""Database repositories for the remote record store."""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from progressgate.db.tables import (
    PROGRESS_TABLE,
    FeedbackTable,
    ProgressTable,
    ResultTable,
)
from progressgate.errors import MalformedRecordError
from progressgate.models import Feedback, ProgressRecord
from progressgate.utils.time import as_utc, utc_now

logger = logging.getLogger(__name__)


def _like_pattern(marker: str) -> str:
    """Substring pattern for ILIKE, with LIKE wildcards in the marker escaped."""
    escaped = marker.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class ProgressRepository:
    """Repository for progress record operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_task(self, task_id: str) -> list[ProgressRecord]:
        """
        List progress records for a task, newest first.

        Rows that cannot be turned into a record (no id) are skipped and
        logged; shape problems in labels and sources are normalized.
        """
        result = await self.session.execute(
            select(ProgressTable)
            .where(ProgressTable.task_id == task_id)
            .order_by(ProgressTable.created_at.desc(), ProgressTable.id.desc())
        )
        records = []
        for row in result.scalars().all():
            try:
                records.append(self._row_to_model(row))
            except MalformedRecordError as e:
                logger.warning(f"Skipping progress row for task {task_id}: {e.message}")
        return records

    async def find_ids_matching(self, task_id: str, marker: str) -> list[str]:
        """Ids of records under a task whose label contains ``marker`` (case-insensitive)."""
        result = await self.session.execute(
            select(ProgressTable.id).where(
                ProgressTable.task_id == task_id,
                ProgressTable.label.ilike(_like_pattern(marker), escape="\\"),
            )
        )
        return list(result.scalars().all())

    async def delete_ids(self, ids: Iterable[str]) -> int:
        """Delete records by id. Returns the number of rows removed."""
        ids = list(ids)
        if not ids:
            return 0
        result = await self.session.execute(
            delete(ProgressTable).where(ProgressTable.id.in_(ids))
        )
        return result.rowcount or 0

    async def create(
        self,
        task_id: str,
        label: str,
        owner_id: Optional[str] = None,
        sources: Optional[list[dict[str, Any]]] = None,
        record_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> ProgressRecord:
        """Insert a progress record (executor side)."""
        row = ProgressTable(
            id=record_id or f"topic-{uuid4().hex}",
            task_id=task_id,
            owner_id=owner_id,
            label=label,
            sources=sources or [],
            created_at=created_at or utc_now(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get_row(self, record_id: str) -> Optional[dict[str, Any]]:
        """Raw row for one record, or None if it no longer exists."""
        row = await self.session.get(ProgressTable, record_id)
        return self.row_to_dict(row) if row else None

    async def set_sources(
        self,
        task_id: str,
        record_id: str,
        sources: list[dict[str, Any]],
    ) -> Optional[ProgressRecord]:
        """Replace the sources of a record. Returns None if the task has no such record."""
        await self.session.execute(
            update(ProgressTable)
            .where(ProgressTable.id == record_id, ProgressTable.task_id == task_id)
            .values(sources=sources)
        )
        result = await self.session.execute(
            select(ProgressTable).where(
                ProgressTable.id == record_id, ProgressTable.task_id == task_id
            )
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    @staticmethod
    def row_to_dict(row: ProgressTable) -> dict[str, Any]:
        return {
            "id": row.id,
            "task_id": row.task_id,
            "owner_id": row.owner_id,
            "label": row.label,
            "sources": row.sources,
            "created_at": as_utc(row.created_at) if row.created_at else None,
        }

    def _row_to_model(self, row: ProgressTable) -> ProgressRecord:
        """Convert database row to model."""
        return ProgressRecord.from_row(self.row_to_dict(row), table=PROGRESS_TABLE)


class ResultRepository:
    """Repository for final result operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, task_id: str) -> bool:
        """Existence probe limited to a single row."""
        result = await self.session.execute(
            select(ResultTable.result_id).where(ResultTable.task_id == task_id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_latest(self, task_id: str) -> Optional[dict[str, Any]]:
        """Latest result for a task, or None."""
        result = await self.session.execute(
            select(ResultTable)
            .where(ResultTable.task_id == task_id)
            .order_by(ResultTable.created_at.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return self._row_to_dict(row) if row else None

    async def task_ids_for_owner(self, owner_id: str) -> list[str]:
        """Task ids that have a result for an owner."""
        result = await self.session.execute(
            select(ResultTable.task_id).where(ResultTable.owner_id == owner_id).distinct()
        )
        return list(result.scalars().all())

    async def create(
        self,
        task_id: str,
        content: dict[str, Any],
        owner_id: Optional[str] = None,
        result_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Insert a result (executor side)."""
        row = ResultTable(
            result_id=result_id or f"result-{uuid4().hex}",
            task_id=task_id,
            owner_id=owner_id,
            content=content,
            created_at=utc_now(),
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_dict(row)

    def _row_to_dict(self, row: ResultTable) -> dict[str, Any]:
        return {
            "result_id": row.result_id,
            "task_id": row.task_id,
            "owner_id": row.owner_id,
            "content": row.content,
            "created_at": as_utc(row.created_at),
        }


class FeedbackRepository:
    """Repository for feedback operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def count(self, task_id: str) -> int:
        """Exact count of feedback rows for a task."""
        result = await self.session.execute(
            select(func.count()).select_from(FeedbackTable).where(FeedbackTable.task_id == task_id)
        )
        return int(result.scalar_one())

    async def create(self, feedback: Feedback) -> Feedback:
        """Insert a feedback row."""
        self.session.add(
            FeedbackTable(
                feedback_id=feedback.feedback_id,
                task_id=feedback.task_id,
                owner_id=feedback.owner_id,
                rating=feedback.rating,
                comment=feedback.comment,
                created_at=feedback.created_at,
            )
        )
        await self.session.flush()
        return feedback
