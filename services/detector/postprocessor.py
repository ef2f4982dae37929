"""Decode raw YOLO head output into frame-space detections.

Supported head layouts:
- CHANNEL_FIRST: [attributes, boxes]  (value of attribute a for box i at a * boxes + i)
- TRANSPOSED:    [boxes, attributes]  (value at i * attributes + a)

Per-box attributes are [cx, cy, w, h, (objectness), class scores...].
When the buffer arrives flat, the layout is inferred from its length; when
it keeps its tensor shape, the axis that matches the anchor count wins.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from services.detector.base_detector import Detection
from services.profiler import profiler

logger = logging.getLogger(__name__)

DEFAULT_NUM_ANCHORS = 8400
DEFAULT_ATTR_COUNTS = (6, 5)


class Layout(str, Enum):
    CHANNEL_FIRST = "channel_first"
    TRANSPOSED = "transposed"


@dataclass(frozen=True)
class HeadLayout:
    """Resolved output layout."""

    layout: Layout
    num_attrs: int
    num_boxes: int


@dataclass
class PostprocessOpts:
    """Post-processing options (defaults match the bus-number model)."""

    input_size: int = 640
    class_names: List[str] = field(default_factory=lambda: ["busnumber"])
    allowed_class_names: List[str] = field(default_factory=lambda: ["busnumber"])
    min_box_area: float = 12 * 12
    aspect_ratio_range: Tuple[float, float] = (0.25, 4.0)
    num_anchors: int = DEFAULT_NUM_ANCHORS
    attr_counts: Sequence[int] = DEFAULT_ATTR_COUNTS
    # None = decide from the attribute count
    has_objectness: Optional[bool] = None
    # Head emits box coordinates in 0..1 instead of model pixels
    coords_normalized: bool = False


def infer_layout(
    total: int,
    shape: Optional[Sequence[int]] = None,
    num_anchors: int = DEFAULT_NUM_ANCHORS,
    attr_counts: Sequence[int] = DEFAULT_ATTR_COUNTS,
) -> HeadLayout:
    """Resolve the head layout once per output.

    Args:
        total: number of values in the buffer
        shape: original tensor shape if still known (leading 1s are ignored)
        num_anchors: expected anchor count
        attr_counts: attribute counts to try, in order

    Returns:
        HeadLayout. Falls back to CHANNEL_FIRST with total // num_anchors attributes.
    """
    if shape is not None:
        dims = [int(d) for d in shape if int(d) != 1]
        if len(dims) == 2:
            a, b = dims
            if b == num_anchors:
                return HeadLayout(Layout.CHANNEL_FIRST, a, b)
            if a == num_anchors:
                return HeadLayout(Layout.TRANSPOSED, b, a)
            # Unknown anchor count: the longer axis holds the boxes
            if a > b:
                return HeadLayout(Layout.TRANSPOSED, b, a)
            return HeadLayout(Layout.CHANNEL_FIRST, a, b)

    for num_attrs in attr_counts:
        if num_attrs * num_anchors == total:
            return HeadLayout(Layout.CHANNEL_FIRST, num_attrs, num_anchors)

    num_attrs = total // num_anchors if num_anchors > 0 else 0
    logger.debug(
        f"No exact layout match for {total} values, assuming [{num_attrs}, {num_anchors}]"
    )
    return HeadLayout(Layout.CHANNEL_FIRST, num_attrs, num_anchors)


def _class_layout(num_attrs: int, has_objectness: Optional[bool]) -> Tuple[bool, int]:
    """Return (has_objectness, num_classes) for an attribute count."""
    if has_objectness is not None:
        num_classes = num_attrs - (5 if has_objectness else 4)
        return has_objectness, max(1, num_classes)

    if num_attrs >= 6:
        # cx, cy, w, h, obj, classes...
        return True, num_attrs - 5
    if num_attrs == 5:
        # cx, cy, w, h, single class
        return False, 1
    return False, max(1, num_attrs - 4)


def to_attribute_matrix(raw: np.ndarray, head: HeadLayout) -> np.ndarray:
    """View the raw buffer as a (boxes, attributes) matrix."""
    flat = np.asarray(raw, dtype=np.float32).reshape(-1)
    used = head.num_attrs * head.num_boxes
    flat = flat[:used]
    if head.layout == Layout.TRANSPOSED:
        return flat.reshape(head.num_boxes, head.num_attrs)
    return flat.reshape(head.num_attrs, head.num_boxes).T


def compute_iou(a: Sequence[float], b: Sequence[float]) -> float:
    """IoU of two (x, y, w, h) boxes."""
    ax, ay, aw, ah = a
    bx, by, bw, bh = b

    iw = max(0.0, min(ax + aw, bx + bw) - max(ax, bx))
    ih = max(0.0, min(ay + ah, by + bh) - max(ay, by))
    inter = iw * ih
    union = aw * ah + bw * bh - inter
    return 0.0 if union <= 0 else inter / union


def apply_nms(detections: List[Detection], iou_threshold: float) -> List[Detection]:
    """Greedy NMS: keep a box only if IoU <= threshold with every kept box."""
    ordered = sorted(detections, key=lambda d: d.confidence, reverse=True)
    keep: List[Detection] = []
    for det in ordered:
        if all(compute_iou(det.bbox, k.bbox) <= iou_threshold for k in keep):
            keep.append(det)
    return keep


def decode(
    raw: np.ndarray,
    frame_width: int,
    frame_height: int,
    scale: float,
    pad_x: float,
    pad_y: float,
    conf_threshold: float = 0.25,
    iou_threshold: float = 0.45,
    opts: Optional[PostprocessOpts] = None,
) -> List[Detection]:
    """Decode a raw head output into NMS-filtered detections in frame pixels.

    Filter order per box: score, class allow-list, letterbox undo + clip,
    degenerate box, minimum area and aspect ratio.
    """
    opts = opts or PostprocessOpts()
    raw = np.asarray(raw)
    if raw.size == 0:
        return []

    head = infer_layout(
        raw.size,
        shape=raw.shape if raw.ndim > 1 else None,
        num_anchors=opts.num_anchors,
        attr_counts=opts.attr_counts,
    )
    if head.num_attrs < 4 or head.num_boxes <= 0:
        logger.warning(f"Unusable head layout: {head}")
        return []

    has_obj, num_classes = _class_layout(head.num_attrs, opts.has_objectness)
    class_start = 5 if has_obj else 4
    num_classes = max(0, min(num_classes, head.num_attrs - class_start))

    matrix = to_attribute_matrix(raw, head)
    allowed = set(opts.allowed_class_names or [])
    ar_min, ar_max = opts.aspect_ratio_range
    coord_scale = float(opts.input_size) if opts.coords_normalized else 1.0

    # Score every anchor at once; only survivors go through the per-box loop
    objectness = matrix[:, 4] if has_obj else np.ones(len(matrix), dtype=np.float32)
    if num_classes > 0:
        class_scores = matrix[:, class_start:class_start + num_classes]
        best_classes = np.argmax(class_scores, axis=1)
        best_probs = class_scores[np.arange(len(matrix)), best_classes]
    else:
        best_classes = np.zeros(len(matrix), dtype=np.int64)
        best_probs = np.ones(len(matrix), dtype=np.float32)
    scores = objectness * best_probs

    candidates: List[Detection] = []
    for i in np.flatnonzero(scores >= conf_threshold):
        row = matrix[i]
        score = float(scores[i])
        best_class = int(best_classes[i])

        if best_class < len(opts.class_names):
            name = opts.class_names[best_class]
        else:
            name = str(best_class)
        if allowed and name not in allowed:
            continue

        cx, cy, w, h = (float(v) * coord_scale for v in row[:4])

        # Undo letterbox: model pixels -> frame pixels
        x1 = (cx - w / 2.0 - pad_x) / scale
        y1 = (cy - h / 2.0 - pad_y) / scale
        x2 = (cx + w / 2.0 - pad_x) / scale
        y2 = (cy + h / 2.0 - pad_y) / scale

        x1 = min(max(x1, 0.0), float(frame_width))
        y1 = min(max(y1, 0.0), float(frame_height))
        x2 = min(max(x2, 0.0), float(frame_width))
        y2 = min(max(y2, 0.0), float(frame_height))
        bw, bh = x2 - x1, y2 - y1
        if bw <= 0 or bh <= 0:
            continue

        if bw * bh < opts.min_box_area:
            continue
        ratio = bw / max(1.0, bh)
        if ratio < ar_min or ratio > ar_max:
            continue

        candidates.append(
            Detection(
                bbox=(x1, y1, bw, bh),
                confidence=score,
                class_id=best_class,
                class_name=name,
            )
        )

    with profiler.profile("nms"):
        return apply_nms(candidates, iou_threshold)
