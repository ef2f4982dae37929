"""Operational event logging for the bus finder.

High-level events an operator cares about, separate from technical logs:
- Query received / session ended
- Plate region detected and sent to OCR
- Bus number matched and announced
- Recognition jobs aborted (expected race losses) or failed
- System events (startup, model load, shutdown)

Aborted jobs are their own event type so they are never mistaken for failures.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class EventType(str, Enum):
    """Event types for operational logging."""

    QUERY = "query"  # Query received / session lifecycle
    DETECTION = "detection"  # Plate region submitted for OCR
    MATCH = "match"  # Validated match against a target
    ANNOUNCEMENT = "announcement"  # Spoken announcement delivered
    ABORTED = "aborted"  # Job cancelled by a winning match or session end
    FAILURE = "failure"  # Genuine job / frame failure
    SYSTEM = "system"  # Startup, shutdown, model load


class EventSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class OperationalEvent:
    """Operational event record."""

    timestamp: float
    event_type: EventType
    severity: EventSeverity
    request_id: Optional[str]
    message: str
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json_line(self) -> str:
        """Convert to JSON line (for append-only log file)."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


class OperationalLogger:
    """High-level operational event logger (append-only JSONL)."""

    def __init__(
        self,
        log_dir: str = "output/logs",
        log_file: str = "operational.jsonl",
        console_output: bool = True,
    ):
        """
        Args:
            log_dir: Directory for log files
            log_file: Log file name (JSONL format)
            console_output: Also print to console
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.log_file = self.log_dir / log_file
        self.console_output = console_output

        self._logger = logging.getLogger(__name__)
        self._logger.info(f"OperationalLogger initialized: {self.log_file}")

    def log_event(
        self,
        event_type: EventType,
        message: str,
        severity: EventSeverity = EventSeverity.INFO,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> OperationalEvent:
        event = OperationalEvent(
            timestamp=time.time(),
            event_type=event_type,
            severity=severity,
            request_id=request_id,
            message=message,
            details=details or {},
        )

        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(event.to_json_line() + "\n")
        except OSError as e:
            self._logger.error(f"Failed to write operational log: {e}")

        if self.console_output:
            self._print_event(event)
        return event

    def log_query(self, request_id: str, targets, whitelist_size: int):
        self.log_event(
            EventType.QUERY,
            f"Looking for bus {', '.join(sorted(targets))} ({whitelist_size} valid routes)",
            request_id=request_id,
            details={"targets": sorted(targets), "whitelist_size": whitelist_size},
        )

    def log_session_end(self, request_id: str, reason: str, duration_s: float):
        self.log_event(
            EventType.QUERY,
            f"Session ended: {reason} after {duration_s:.1f}s",
            request_id=request_id,
            details={"reason": reason, "duration_s": duration_s},
        )

    def log_detection(self, request_id: Optional[str], job_id: str, confidence: float, bbox):
        self.log_event(
            EventType.DETECTION,
            f"Plate region sent to OCR (job {job_id}, conf {confidence:.2f})",
            request_id=request_id,
            details={"job_id": job_id, "confidence": confidence, "bbox": list(bbox)},
        )

    def log_match(self, request_id: Optional[str], identifier: str, job_id: str):
        self.log_event(
            EventType.MATCH,
            f"Bus {identifier} matched (job {job_id})",
            request_id=request_id,
            details={"identifier": identifier, "job_id": job_id},
        )

    def log_announcement(self, request_id: Optional[str], identifier: str, latency_ms: float):
        self.log_event(
            EventType.ANNOUNCEMENT,
            f"Announced bus {identifier} ({latency_ms:.0f}ms)",
            request_id=request_id,
            details={"identifier": identifier, "latency_ms": latency_ms},
        )

    def log_aborted(self, request_id: Optional[str], job_id: str, reason: str):
        self.log_event(
            EventType.ABORTED,
            f"Job {job_id} aborted: {reason}",
            request_id=request_id,
            details={"job_id": job_id, "reason": reason},
        )

    def log_failure(self, request_id: Optional[str], job_id: str, error: str):
        self.log_event(
            EventType.FAILURE,
            f"Job {job_id} failed: {error}",
            severity=EventSeverity.WARNING,
            request_id=request_id,
            details={"job_id": job_id, "error": error},
        )

    def log_system_event(
        self,
        message: str,
        severity: EventSeverity = EventSeverity.INFO,
        details: Optional[Dict] = None,
    ):
        self.log_event(EventType.SYSTEM, message, severity=severity, details=details or {})

    def _print_event(self, event: OperationalEvent):
        colors = {
            EventSeverity.INFO: "\033[0m",
            EventSeverity.WARNING: "\033[93m",  # Yellow
            EventSeverity.CRITICAL: "\033[91m",  # Red
        }
        reset = "\033[0m"
        time_str = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(event.timestamp))

        parts = [
            f"{colors.get(event.severity, '')}[{event.severity.value.upper()}]",
            f"[{time_str}]",
            f"[{event.event_type.value.upper()}]",
        ]
        if event.request_id:
            parts.append(f"[{event.request_id}]")
        parts.append(event.message)
        parts.append(reset)

        print(" ".join(parts))


# Global singleton instance
_operational_logger: Optional[OperationalLogger] = None


def get_operational_logger(
    log_dir: str = "output/logs",
    log_file: str = "operational.jsonl",
    console_output: bool = True,
) -> OperationalLogger:
    """Get or create the global operational logger (arguments used on first call only)."""
    global _operational_logger
    if _operational_logger is None:
        _operational_logger = OperationalLogger(
            log_dir=log_dir, log_file=log_file, console_output=console_output
        )
    return _operational_logger


def reset_operational_logger():
    """Reset global operational logger (for testing)."""
    global _operational_logger
    _operational_logger = None
