"""Progress percentage projection."""

from dataclasses import dataclass
from typing import Sequence

from progressgate.models import ProgressRecord
from progressgate.progress.markers import is_terminal

# Fixed start, finalize and ready steps outside the per-query work
OVERHEAD_STEPS = 3
MIN_EXPECTED_TOTAL = 4
MAX_INCOMPLETE_PERCENTAGE = 99


@dataclass(frozen=True)
class Projection:
    percentage: int
    is_complete: bool


def expected_total(breadth: int, depth: int) -> int:
    """Expected number of progress records for a task."""
    return max(MIN_EXPECTED_TOTAL, breadth * depth + OVERHEAD_STEPS)


def _round_percent(count: int, total: int) -> int:
    """round(count / total * 100) with halves rounded up, in integer math."""
    return (count * 200 + total) // (2 * total)


def project(
    records: Sequence[ProgressRecord],
    expected_total: int,
    is_complete: bool = False,
) -> Projection:
    """
    Map a newest-first record list to a percentage and completion flag.

    Completion needs the explicit flag or a terminal head label; without
    it the percentage is capped at 99.
    """
    if expected_total < 1:
        raise ValueError(f"expected_total must be positive, got {expected_total}")

    if not records:
        return Projection(percentage=0, is_complete=is_complete)

    if is_complete or is_terminal(records[0].label):
        return Projection(percentage=100, is_complete=True)

    percentage = min(_round_percent(len(records), expected_total), MAX_INCOMPLETE_PERCENTAGE)
    return Projection(percentage=percentage, is_complete=False)
