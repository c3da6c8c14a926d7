"""Feedback model - one-time rating of a finished task."""

import random
import string
import time
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from progressgate.utils.time import utc_now


def new_feedback_id() -> str:
    """Return an id of the form ``feedback-<epoch ms>-<5 random chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"feedback-{int(time.time() * 1000)}-{suffix}"


class Feedback(BaseModel):
    """Rating and optional comment for a task."""

    feedback_id: str = Field(default_factory=new_feedback_id)
    task_id: str
    owner_id: Optional[str] = None
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
