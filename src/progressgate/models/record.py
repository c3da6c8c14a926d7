"""Progress record model - one unit of task progress."""

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from progressgate.errors import MalformedRecordError
from progressgate.utils.time import as_utc, utc_now


class Source(BaseModel):
    """A source link attached to a progress record."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: Optional[str] = None


class ProgressRecord(BaseModel):
    """
    Progress record as observed from the remote store.

    Records are immutable; the only locally derived field is ``settled``,
    which changes through ``model_copy`` in the per-task state.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "progress_id"))
    task_id: str = Field(validation_alias=AliasChoices("task_id", "research_id"))
    owner_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("owner_id", "user_id")
    )
    label: str = Field(default="", validation_alias=AliasChoices("label", "topic"))
    created_at: datetime = Field(default_factory=utc_now)
    sources: tuple[Source, ...] = Field(
        default=(), validation_alias=AliasChoices("sources", "links")
    )
    settled: bool = False

    @field_validator("id", "task_id", mode="before")
    @classmethod
    def require_identity(cls, v: Any) -> str:
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("identity field is empty")
        return str(v)

    @field_validator("owner_id", mode="before")
    @classmethod
    def coerce_owner(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator("label", mode="before")
    @classmethod
    def coerce_label(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def default_created_at(cls, v: Any) -> Any:
        return utc_now() if v is None else v

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("sources", mode="before")
    @classmethod
    def coerce_sources(cls, v: Any) -> tuple[Any, ...]:
        """Malformed source payloads collapse to an empty or partial list."""
        if not isinstance(v, (list, tuple)):
            return ()
        sources = []
        for item in v:
            if isinstance(item, str) and item:
                sources.append({"url": item})
            elif isinstance(item, Mapping) and isinstance(item.get("url"), str) and item["url"]:
                title = item.get("title")
                sources.append(
                    {"url": item["url"], "title": title if isinstance(title, str) else None}
                )
        return tuple(sources)

    @classmethod
    def from_row(cls, row: Mapping[str, Any], table: str = "progress") -> "ProgressRecord":
        """
        Validate a remote row at the system boundary.

        Shape problems in ``label`` and ``sources`` are normalized. Rows
        without an ``id`` or ``task_id`` cannot be merged and raise
        MalformedRecordError.
        """
        if not isinstance(row, Mapping):
            raise MalformedRecordError(table, f"expected a mapping, got {type(row).__name__}")
        try:
            return cls.model_validate({k: v for k, v in row.items() if k != "settled"})
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise MalformedRecordError(table, f"invalid fields: {fields}") from e

    def settle(self) -> "ProgressRecord":
        """Return this record marked as superseded."""
        if self.settled:
            return self
        return self.model_copy(update={"settled": True})

    def merged_with(self, incoming: "ProgressRecord") -> "ProgressRecord":
        """
        Apply an update from the remote store.

        Settlement is local and ``created_at`` is fixed at insert, so an
        update never reorders the list.
        """
        return incoming.model_copy(
            update={"settled": self.settled, "created_at": self.created_at}
        )

    def reconciled_with(self, snapshot: "ProgressRecord") -> "ProgressRecord":
        """
        Fold a snapshot copy of this record into the pushed one.

        A snapshot may predate updates already merged from the feed, so
        local fields win and snapshot sources are only added.
        """
        extra = snapshot.added_sources(self)
        if not extra:
            return self
        return self.model_copy(update={"sources": self.sources + tuple(extra)})

    def added_sources(self, previous: "ProgressRecord") -> list[Source]:
        """Sources present here but not on ``previous``."""
        known = {s.url for s in previous.sources}
        return [s for s in self.sources if s.url not in known]
