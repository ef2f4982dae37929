"""Recognition services: session state and the parallel OCR engine."""

from services.recognition.engine import (
    JobStatus,
    ParallelRecognitionEngine,
    RecognitionJob,
    RecognitionResult,
)
from services.recognition.session import MatchTarget, SessionState, object_identity

__all__ = [
    "JobStatus",
    "ParallelRecognitionEngine",
    "RecognitionJob",
    "RecognitionResult",
    "MatchTarget",
    "SessionState",
    "object_identity",
]
