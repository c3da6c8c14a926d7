"""ProgressGate HTTP API."""

from progressgate.api.router import router

__all__ = ["router"]
