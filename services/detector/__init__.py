"""Object detection module."""

from services.detector.base_detector import Detection, InferenceEngine
from services.detector.detector import ObjectDetector
from services.detector.preprocessor import PreprocessResult, letterbox
from services.detector.postprocessor import (
    HeadLayout,
    Layout,
    PostprocessOpts,
    apply_nms,
    compute_iou,
    decode,
    infer_layout,
)
from services.detector.detector_factory import (
    create_detector,
    get_detector_info,
    postprocess_opts_from_config,
)

__all__ = [
    "Detection",
    "InferenceEngine",
    "ObjectDetector",
    "PreprocessResult",
    "letterbox",
    "HeadLayout",
    "Layout",
    "PostprocessOpts",
    "apply_nms",
    "compute_iou",
    "decode",
    "infer_layout",
    "create_detector",
    "get_detector_info",
    "postprocess_opts_from_config",
]
