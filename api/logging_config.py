"""Logging configuration for FastAPI server.

Provides custom logging setup to reduce noise from the high-rate OCR access
logs (one POST /api/ocr per detected plate region).
"""

import logging
import time
from typing import Dict, List, Optional

DEFAULT_COMPRESSED_PATHS = ("/api/ocr",)


class OCRAccessFilter(logging.Filter):
    """Filter to compress repetitive access logs for busy endpoints.

    Instead of logging every OCR request (up to ~10 in flight per frame),
    this filter:
    - Logs the first occurrence per (endpoint, status) immediately
    - Groups subsequent occurrences and logs a summary every N seconds
    - Lets non-2xx statuses through immediately
    """

    def __init__(self, name="", interval: int = 10, paths: Optional[List[str]] = None):
        super().__init__(name)
        self.interval = interval
        self.paths = tuple(paths or DEFAULT_COMPRESSED_PATHS)
        self.counters: Dict[str, Dict] = {}
        self.last_log_time: Dict[str, float] = {}
        self.summaries: List[str] = []

    def _parse(self, msg: str):
        # Expected: '127.0.0.1:5000 - "POST /api/ocr HTTP/1.1" 200'
        parts = msg.replace('"', " ").split()
        for i, part in enumerate(parts):
            if part in self.paths:
                status = None
                for candidate in parts[i + 1:]:
                    if candidate.isdigit():
                        status = candidate
                        break
                return part, status
        return None, None

    def filter(self, record: logging.LogRecord) -> bool:
        """Returns True to allow the log, False to suppress it."""
        if record.levelno != logging.INFO:
            return True

        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True

        endpoint, status = self._parse(msg)
        if endpoint is None:
            return True
        if status is not None and not status.startswith("2"):
            return True

        key = f"{endpoint}:{status}"
        now = time.time()
        counter = self.counters.get(key)
        if counter is None:
            self.counters[key] = {"count": 0, "first_time": now}
            self.last_log_time[key] = now
            return True

        counter["count"] += 1
        if now - self.last_log_time[key] < self.interval:
            return False

        count = counter["count"]
        duration = now - counter["first_time"]
        rate = count / duration if duration > 0 else 0.0
        summary = (
            f"[OCR Summary] {endpoint} - {count} requests in {duration:.1f}s "
            f"({rate:.1f} req/s, status {status})"
        )
        self.summaries.append(summary)
        print(f"INFO:     {summary}", flush=True)

        counter["count"] = 0
        counter["first_time"] = now
        self.last_log_time[key] = now
        return False


def configure_uvicorn_logging(log_level: str = "info") -> dict:
    """Uvicorn logging config dict with the OCR access filter applied.

    Args:
        log_level: Logging level (info, debug, warning, error)
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "ocr_access_filter": {
                "()": "api.logging_config.OCRAccessFilter",
                "interval": 10,
            }
        },
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(levelprefix)s %(name)s: %(message)s",
                "use_colors": True,
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s',
            },
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
            },
            "access": {
                "formatter": "access",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "filters": ["ocr_access_filter"],
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": log_level.upper()},
            "uvicorn.error": {"level": "INFO"},
            "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
            "services": {"handlers": ["default"], "level": log_level.upper(), "propagate": False},
            "api": {"handlers": ["default"], "level": log_level.upper(), "propagate": False},
        },
    }
