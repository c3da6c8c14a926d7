"""ProgressGate database layer."""

from progressgate.db.base import Base, get_privileged_session, get_session, init_db
from progressgate.db.tables import (
    FEEDBACK_TABLE,
    PROGRESS_TABLE,
    RESULTS_TABLE,
    FeedbackTable,
    ProgressTable,
    ResultTable,
)

__all__ = [
    "Base",
    "FEEDBACK_TABLE",
    "FeedbackTable",
    "PROGRESS_TABLE",
    "ProgressTable",
    "RESULTS_TABLE",
    "ResultTable",
    "get_privileged_session",
    "get_session",
    "init_db",
]
