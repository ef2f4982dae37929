"""Pipeline processor: one frame through letterbox -> inference -> decode.

Synchronous on purpose: detection math never yields to the event loop.
"""

import time
from typing import Dict, List, Optional, Tuple

import numpy as np

from services.detector.base_detector import Detection
from services.detector.postprocessor import PostprocessOpts, decode
from services.detector.preprocessor import letterbox
from services.profiler import profiler


class FrameProcessor:
    """Runs the detector on a single frame and returns frame-space detections."""

    def __init__(
        self,
        detector,
        opts: Optional[PostprocessOpts] = None,
        conf_threshold: float = 0.25,
        iou_threshold: float = 0.45,
    ):
        """
        Args:
            detector: ObjectDetector (``infer(tensor) -> np.ndarray``)
            opts: post-processing options (input size, classes, filters)
            conf_threshold: minimum objectness x class score
            iou_threshold: NMS IoU threshold
        """
        self.detector = detector
        self.opts = opts or PostprocessOpts()
        self.conf_threshold = conf_threshold
        self.iou_threshold = iou_threshold
        self.frames_processed = 0

    def process_frame(self, frame: np.ndarray) -> Tuple[List[Detection], Dict[str, float]]:
        """Process a single frame.

        Args:
            frame: (H, W, 3) BGR uint8 image

        Returns:
            (detections, timing) where timing holds per-stage milliseconds

        Raises:
            RenderingUnavailable: frame missing or empty
            ModelNotReady / InferenceFailed: from the detector
        """
        timing = {}

        t0 = time.time()
        with profiler.profile("preprocessing"):
            prep = letterbox(frame, self.opts.input_size)
        timing["preprocess"] = (time.time() - t0) * 1000

        t0 = time.time()
        with profiler.profile("inference"):
            raw = self.detector.infer(prep.tensor)
        timing["inference"] = (time.time() - t0) * 1000

        t0 = time.time()
        with profiler.profile("postprocessing"):
            detections = decode(
                raw,
                prep.frame_width,
                prep.frame_height,
                prep.scale,
                prep.pad_x,
                prep.pad_y,
                conf_threshold=self.conf_threshold,
                iou_threshold=self.iou_threshold,
                opts=self.opts,
            )
        timing["postprocess"] = (time.time() - t0) * 1000
        timing["total"] = sum(timing.values())

        self.frames_processed += 1
        return detections, timing
