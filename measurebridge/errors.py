"""Bridge error types shared by the capability checker and stream adapters."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False)
class BridgeError(Exception):
    """Base error raised by measurebridge."""

    message: str
    error_code: str = "bridge_error"

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


@dataclass(eq=False)
class CapabilityQueryError(BridgeError):
    """The underlying client could not answer the capability query."""

    error_code: str = "capability_query_failed"


@dataclass(eq=False)
class RegistrationError(BridgeError):
    """Registering the callback failed; the subscription never became active."""

    error_code: str = "registration_failed"


@dataclass(eq=False)
class StreamOverflowError(BridgeError):
    """A send from the event loop thread found the subscription buffer full."""

    error_code: str = "stream_overflow"


@dataclass(eq=False)
class SubscriptionClosedError(BridgeError):
    """The subscription was closed before the event could be handed over."""

    error_code: str = "subscription_closed"


__all__ = [
    "BridgeError",
    "CapabilityQueryError",
    "RegistrationError",
    "StreamOverflowError",
    "SubscriptionClosedError",
]
