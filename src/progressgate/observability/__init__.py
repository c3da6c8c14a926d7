"""Observability helpers for ProgressGate."""

from progressgate.observability.metrics import metrics

__all__ = ["metrics"]
