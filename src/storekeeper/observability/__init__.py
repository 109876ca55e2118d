"""Event bus and structured logging."""

from storekeeper.observability.events import DispatchError, EventBus, Subscriber
from storekeeper.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    attach_event_logging,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "LoggingConfig",
    "LoggingHandle",
    "Subscriber",
    "attach_event_logging",
    "setup_logging",
    "shutdown_logging",
]
