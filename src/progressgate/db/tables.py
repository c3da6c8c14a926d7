"""SQLAlchemy table definitions for the remote record store."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from progressgate.db.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ProgressTable(Base):
    """Progress records - one row per step reported by the task executor."""

    __tablename__ = "research_progress"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    label: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sources: Mapped[Any] = mapped_column(JSONType, nullable=True, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        # Snapshot queries: newest first per task
        Index("idx_progress_task_created", "task_id", "created_at"),
    )


class ResultTable(Base):
    """Final research results - at most one expected per task."""

    __tablename__ = "research_results"

    result_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_results_task", "task_id"),
        Index("idx_results_owner", "owner_id"),
    )


class FeedbackTable(Base):
    """Task feedback - one rating per task."""

    __tablename__ = "research_feedback"

    feedback_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_feedback_task", "task_id"),
    )


PROGRESS_TABLE = ProgressTable.__tablename__
RESULTS_TABLE = ResultTable.__tablename__
FEEDBACK_TABLE = FeedbackTable.__tablename__
