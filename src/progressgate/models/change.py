"""Change feed event model."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from progressgate.models.enums import ChangeType


class Change(BaseModel):
    """One row-level change delivered by the change feed."""

    model_config = ConfigDict(frozen=True)

    table: str
    event_type: ChangeType
    new: Optional[dict[str, Any]] = None
    old: Optional[dict[str, Any]] = None
    # Large fields were dropped to fit the transport; refetch the row
    truncated: bool = False

    @field_validator("event_type", mode="before")
    @classmethod
    def parse_event_type(cls, v: Any) -> Any:
        return ChangeType.parse(v) if isinstance(v, str) else v

    @field_validator("new", "old", mode="before")
    @classmethod
    def empty_row_is_none(cls, v: Any) -> Any:
        return v or None

    @property
    def row(self) -> dict[str, Any]:
        """The row the event is about (``old`` for deletes)."""
        if self.event_type == ChangeType.DELETE:
            return self.old or {}
        return self.new or {}

    @property
    def task_id(self) -> Optional[str]:
        for row in (self.new, self.old):
            if row:
                value = row.get("task_id", row.get("research_id"))
                if value is not None:
                    return str(value)
        return None
