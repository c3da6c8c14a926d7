"""Label classification for progress records."""

from typing import Iterable, Optional

from progressgate.config import settings


def _contains(label: Optional[str], marker: str) -> bool:
    return bool(label) and marker in label.lower()


def is_pollution(label: Optional[str], marker: Optional[str] = None) -> bool:
    """True for debug/test records that must never be shown."""
    return _contains(label, (marker or settings.pollution_marker).lower())


def is_terminal(label: Optional[str], markers: Optional[Iterable[str]] = None) -> bool:
    """True when the label marks the task as done or ready."""
    markers = settings.terminal_markers if markers is None else markers
    return any(_contains(label, m.lower()) for m in markers)

