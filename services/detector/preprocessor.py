"""Frame preprocessing: letterbox a BGR frame into the detector's input tensor.

The scaled frame is centred on a square mid-gray canvas so the aspect ratio
survives and detections can be mapped back exactly with
    x_frame = (x_model - pad_x) / scale
"""

from dataclasses import dataclass

import cv2
import numpy as np

from services.errors import RenderingUnavailable

# Letterbox background (same gray the YOLO exporters pad with)
LETTERBOX_VALUE = 114


@dataclass
class PreprocessResult:
    """Model input plus the transform needed to undo the letterbox."""

    tensor: np.ndarray  # (1, 3, S, S) float32 in [0, 1], RGB
    scale: float
    pad_x: int
    pad_y: int
    frame_width: int
    frame_height: int


def letterbox(frame: np.ndarray, target_size: int = 640) -> PreprocessResult:
    """Resize and pad a frame into a [1, 3, S, S] normalized tensor.

    Args:
        frame: (H, W, 3) BGR uint8 image
        target_size: square model input size S

    Returns:
        PreprocessResult with tensor, scale and padding

    Raises:
        RenderingUnavailable: if the frame is missing or has no pixels
    """
    if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
        raise RenderingUnavailable("No frame available to render model input")
    if frame.ndim != 3 or frame.shape[2] < 3:
        raise RenderingUnavailable(f"Unsupported frame shape: {frame.shape}")

    src_h, src_w = frame.shape[:2]
    scale = min(target_size / src_w, target_size / src_h)
    scaled_w = max(1, int(round(src_w * scale)))
    scaled_h = max(1, int(round(src_h * scale)))
    pad_x = (target_size - scaled_w) // 2
    pad_y = (target_size - scaled_h) // 2

    resized = cv2.resize(frame[:, :, :3], (scaled_w, scaled_h), interpolation=cv2.INTER_LINEAR)

    canvas = np.full((target_size, target_size, 3), LETTERBOX_VALUE, dtype=np.uint8)
    canvas[pad_y:pad_y + scaled_h, pad_x:pad_x + scaled_w] = resized

    # BGR -> RGB, HWC -> CHW, [0, 255] -> [0, 1]
    rgb = cv2.cvtColor(canvas, cv2.COLOR_BGR2RGB)
    tensor = rgb.transpose(2, 0, 1).astype(np.float32) / 255.0

    return PreprocessResult(
        tensor=np.ascontiguousarray(tensor[np.newaxis, ...]),
        scale=scale,
        pad_x=pad_x,
        pad_y=pad_y,
        frame_width=src_w,
        frame_height=src_h,
    )


def crop_region(frame: np.ndarray, bbox) -> np.ndarray:
    """Cut a detection's bbox (x, y, w, h) out of the frame, clipped to bounds."""
    h, w = frame.shape[:2]
    x, y, bw, bh = bbox
    x1 = max(0, int(np.floor(x)))
    y1 = max(0, int(np.floor(y)))
    x2 = min(w, int(np.ceil(x + bw)))
    y2 = min(h, int(np.ceil(y + bh)))
    return frame[y1:y2, x1:x2].copy()


def encode_jpeg(image: np.ndarray, quality: int = 90) -> bytes:
    """Encode a BGR image as JPEG bytes."""
    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise RenderingUnavailable("JPEG encoding failed")
    return buf.tobytes()
