"""ProgressGate utilities."""

from progressgate.utils.time import as_utc, utc_now
from progressgate.utils.timeouts import bounded

__all__ = ["as_utc", "bounded", "utc_now"]
