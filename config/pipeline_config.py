"""Global pipeline configuration as class-level attributes.

This module defines PipelineConfig as a singleton-like configuration class
that holds all global settings for the bus-number pipeline. Environment
variables are read once at import time and stored here, making them
accessible throughout the codebase without repeating env lookups.

Usage:
    from config.pipeline_config import PipelineConfig

    # Access settings
    threshold = PipelineConfig.CONF_THRESHOLD
    max_jobs = PipelineConfig.MAX_CONCURRENT_OCR

    # Override if needed (before the orchestrator is created)
    PipelineConfig.CONF_THRESHOLD = 0.4
"""

import os
from typing import List, Optional


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_list(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class PipelineConfig:
    """Global pipeline configuration class.

    All settings are class attributes initialized from environment variables
    at module load time.
    """

    # ========================================================================
    # MODEL CONFIGURATION
    # ========================================================================

    # Path to the compiled detector (.tflite)
    # Override via env: MODEL_PATH=/models/yolo_trained.tflite
    MODEL_PATH: str = os.getenv("MODEL_PATH", "models/yolo_trained.tflite")

    # Accelerator hint passed to the inference engine: 'auto', 'cpu' or 'gpu'
    MODEL_ACCELERATOR: str = os.getenv("MODEL_ACCELERATOR", "auto")

    # Interpreter threads for CPU inference
    MODEL_NUM_THREADS: int = int(os.getenv("MODEL_NUM_THREADS", "4"))

    # Square model input size (letterbox target)
    INPUT_SIZE: int = int(os.getenv("INPUT_SIZE", "640"))

    # Anchor count of the detection head (8400 for a 640 input)
    NUM_ANCHORS: int = int(os.getenv("NUM_ANCHORS", "8400"))

    # Set when the exported head emits 0..1 box coordinates
    COORDS_NORMALIZED: bool = _env_bool("COORDS_NORMALIZED")

    # ========================================================================
    # DETECTION FILTERING
    # ========================================================================

    # Override via env: CONF_THRESHOLD=0.3
    CONF_THRESHOLD: float = float(os.getenv("CONF_THRESHOLD", "0.25"))

    # NMS IoU threshold
    IOU_THRESHOLD: float = float(os.getenv("IOU_THRESHOLD", "0.45"))

    # Training labels, in class-id order
    CLASS_NAMES: List[str] = _env_list("CLASS_NAMES", "busnumber")

    # Only these labels survive post-processing (empty = keep all)
    ALLOWED_CLASSES: List[str] = _env_list("ALLOWED_CLASSES", "busnumber")

    # Reject boxes smaller than this (frame pixels^2)
    MIN_BOX_AREA: float = float(os.getenv("MIN_BOX_AREA", str(12 * 12)))

    # Allowed width/height ratio range
    ASPECT_RATIO_MIN: float = float(os.getenv("ASPECT_RATIO_MIN", "0.25"))
    ASPECT_RATIO_MAX: float = float(os.getenv("ASPECT_RATIO_MAX", "4.0"))

    # ========================================================================
    # RECOGNITION ENGINE
    # ========================================================================

    # Max OCR jobs running at once; extra jobs wait in a FIFO queue
    MAX_CONCURRENT_OCR: int = int(os.getenv("MAX_CONCURRENT_OCR", "10"))

    # OCR endpoint (see api/routes/ocr.py)
    OCR_URL: str = os.getenv("OCR_URL", "http://localhost:8000/api/ocr")

    # Transport-level timeout for a single OCR request
    OCR_TIMEOUT_S: float = float(os.getenv("OCR_TIMEOUT_S", "10.0"))

    # JPEG quality used when encoding crops for OCR
    CROP_JPEG_QUALITY: int = int(os.getenv("CROP_JPEG_QUALITY", "90"))

    # Fallback whitelist when a query does not carry one
    DEFAULT_WHITELIST: List[str] = _env_list("DEFAULT_WHITELIST", "")

    # ========================================================================
    # SAMPLING LOOP & ADAPTIVE RATE
    # ========================================================================

    # Fixed sampling interval of the orchestrator loop
    SAMPLE_INTERVAL_MS: int = int(os.getenv("SAMPLE_INTERVAL_MS", "200"))

    # Rolling window of per-frame pipeline durations
    RATE_WINDOW: int = int(os.getenv("RATE_WINDOW", "10"))

    # Slow down above, speed up below (milliseconds)
    RATE_UPPER_MS: float = float(os.getenv("RATE_UPPER_MS", "250"))
    RATE_LOWER_MS: float = float(os.getenv("RATE_LOWER_MS", "150"))

    # Process at most every Nth tick
    MAX_FRAME_SKIP: int = int(os.getenv("MAX_FRAME_SKIP", "5"))

    # Same physical object is not re-sent to OCR within this window
    OBJECT_COOLDOWN_S: float = float(os.getenv("OBJECT_COOLDOWN_S", "5.0"))

    # Grid cell size (pixels) used to bucket boxes into object identities
    IDENTITY_GRID: int = int(os.getenv("IDENTITY_GRID", "32"))

    # ========================================================================
    # ANNOUNCEMENT (TTS)
    # ========================================================================

    TTS_LANGUAGE: str = os.getenv("TTS_LANGUAGE", "en-US")
    TTS_OUTPUT_DIR: str = os.getenv("TTS_OUTPUT_DIR", "audio_output")

    # ========================================================================
    # INPUT / OUTPUT
    # ========================================================================

    # Camera index, file path or RTSP URL
    # Override via env: VIDEO_SOURCE=rtsp://camera/stream
    VIDEO_SOURCE: str = os.getenv("VIDEO_SOURCE", "0")

    # Directory for captured crops
    CAPTURE_DIR: str = os.getenv("CAPTURE_DIR", "output/captured_images")

    # Save every crop sent to OCR
    SAVE_CROPS: bool = _env_bool("SAVE_CROPS")

    # Operational event log directory
    LOG_DIR: str = os.getenv("LOG_DIR", "output/logs")

    # Maximum frames to process per session (None = unlimited)
    _MAX_FRAMES_STR = os.getenv("MAX_FRAMES", "")
    MAX_FRAMES: Optional[int] = int(_MAX_FRAMES_STR) if _MAX_FRAMES_STR else None

    # ========================================================================
    # CLASS FOR: Methods
    # ========================================================================

    @classmethod
    def get_summary(cls) -> dict:
        """Return a dictionary of all configuration settings.

        Useful for debugging and logging configuration state.
        """
        return {
            "MODEL_PATH": cls.MODEL_PATH,
            "MODEL_ACCELERATOR": cls.MODEL_ACCELERATOR,
            "INPUT_SIZE": cls.INPUT_SIZE,
            "NUM_ANCHORS": cls.NUM_ANCHORS,
            "CONF_THRESHOLD": cls.CONF_THRESHOLD,
            "IOU_THRESHOLD": cls.IOU_THRESHOLD,
            "CLASS_NAMES": cls.CLASS_NAMES,
            "ALLOWED_CLASSES": cls.ALLOWED_CLASSES,
            "MIN_BOX_AREA": cls.MIN_BOX_AREA,
            "ASPECT_RATIO": (cls.ASPECT_RATIO_MIN, cls.ASPECT_RATIO_MAX),
            "MAX_CONCURRENT_OCR": cls.MAX_CONCURRENT_OCR,
            "OCR_URL": cls.OCR_URL,
            "SAMPLE_INTERVAL_MS": cls.SAMPLE_INTERVAL_MS,
            "RATE_BOUNDS_MS": (cls.RATE_LOWER_MS, cls.RATE_UPPER_MS),
            "MAX_FRAME_SKIP": cls.MAX_FRAME_SKIP,
            "OBJECT_COOLDOWN_S": cls.OBJECT_COOLDOWN_S,
            "VIDEO_SOURCE": cls.VIDEO_SOURCE,
            "SAVE_CROPS": cls.SAVE_CROPS,
        }

    @classmethod
    def print_summary(cls) -> None:
        """Print configuration summary to console."""
        print("\n" + "=" * 60)
        print("PIPELINE CONFIGURATION")
        print("=" * 60)
        for key, value in cls.get_summary().items():
            print(f"  {key:25s} = {value}")
        print("=" * 60 + "\n")
