"""ProgressGate - live progress tracking for long-running research tasks."""

__version__ = "0.1.0"
