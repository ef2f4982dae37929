"""Detector factory: builds the detector and post-processing options from configuration."""

import logging
from typing import Optional

from config.pipeline_config import PipelineConfig
from services.detector.base_detector import InferenceEngine
from services.detector.detector import ObjectDetector
from services.detector.postprocessor import PostprocessOpts

logger = logging.getLogger(__name__)


def create_detector(
    engine: Optional[InferenceEngine] = None,
    model_path: Optional[str] = None,
    accelerator: Optional[str] = None,
) -> ObjectDetector:
    """Create an (uninitialized) ObjectDetector.

    Args:
        engine: inference engine to use (default: LiteRTEngine)
        model_path: override PipelineConfig.MODEL_PATH
        accelerator: override PipelineConfig.MODEL_ACCELERATOR

    Returns:
        ObjectDetector; call initialize() before inference
    """
    if engine is None:
        from services.detector.litert_engine import LiteRTEngine

        engine = LiteRTEngine(num_threads=PipelineConfig.MODEL_NUM_THREADS)

    path = model_path or PipelineConfig.MODEL_PATH
    accel = accelerator or PipelineConfig.MODEL_ACCELERATOR
    logger.info(f"Initializing detector: {path} (accelerator={accel})")
    return ObjectDetector(engine=engine, model_path=path, accelerator=accel)


def postprocess_opts_from_config() -> PostprocessOpts:
    """Build PostprocessOpts from PipelineConfig."""
    return PostprocessOpts(
        input_size=PipelineConfig.INPUT_SIZE,
        class_names=list(PipelineConfig.CLASS_NAMES),
        allowed_class_names=list(PipelineConfig.ALLOWED_CLASSES),
        min_box_area=PipelineConfig.MIN_BOX_AREA,
        aspect_ratio_range=(PipelineConfig.ASPECT_RATIO_MIN, PipelineConfig.ASPECT_RATIO_MAX),
        num_anchors=PipelineConfig.NUM_ANCHORS,
        coords_normalized=PipelineConfig.COORDS_NORMALIZED,
    )


def get_detector_info(detector: ObjectDetector) -> dict:
    """Get information about the detector configuration.

    Args:
        detector: ObjectDetector instance

    Returns:
        dict with engine type, model path and readiness
    """
    return {
        "engine": type(detector.engine).__name__,
        "model": detector.model_path,
        "accelerator": detector.accelerator,
        "status": detector.get_status(),
        "load_time_ms": round(detector.load_time_ms, 1),
        "error": detector.last_error,
    }
