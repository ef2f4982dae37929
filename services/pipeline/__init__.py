"""Pipeline services for the bus finder.

This package contains the frame processor (detection on one frame), the
adaptive rate controller and the orchestrator that ties detection to the
parallel recognition engine.
"""

from services.pipeline.orchestrator import EndReason, OrchestratorStatus, PipelineOrchestrator
from services.pipeline.processor import FrameProcessor
from services.pipeline.rate_controller import AdaptiveRateController

__all__ = [
    "AdaptiveRateController",
    "EndReason",
    "FrameProcessor",
    "OrchestratorStatus",
    "PipelineOrchestrator",
]
