"""Operational event log for bus queries, matches and aborted jobs."""

from services.logging.operational_logger import (
    EventSeverity,
    EventType,
    OperationalEvent,
    OperationalLogger,
    get_operational_logger,
    reset_operational_logger,
)

__all__ = [
    "EventSeverity",
    "EventType",
    "OperationalEvent",
    "OperationalLogger",
    "get_operational_logger",
    "reset_operational_logger",
]
