"""ProgressGate enumerations."""

from enum import Enum


class ChangeType(str, Enum):
    """Change feed event type."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: str) -> "ChangeType":
        """Accept any casing used by feed transports."""
        return cls(value.upper())


class SubscriptionStatus(str, Enum):
    """Lifecycle of a change feed subscription."""

    PENDING = "pending"
    SUBSCRIBED = "subscribed"
    FAILED = "failed"
    CLOSED = "closed"

    def is_live(self) -> bool:
        return self == SubscriptionStatus.SUBSCRIBED
