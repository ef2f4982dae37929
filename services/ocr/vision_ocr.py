"""Google Cloud Vision text detection backend for the /api/ocr route.

The first text annotation holds the full recognized text; the remaining
annotations are the individual words.
"""

import base64
import logging
import os
import re
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Try to import Google Cloud Vision
VISION_AVAILABLE = False
try:
    from google.cloud import vision

    VISION_AVAILABLE = True
except ImportError:
    logger.warning(
        "google-cloud-vision not installed. "
        "Install with: pip install google-cloud-vision"
    )

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


def decode_image_payload(image: str) -> bytes:
    """Strip an optional data-URL prefix and base64-decode the rest."""
    return base64.b64decode(_DATA_URL_PREFIX.sub("", image))


class VisionTextDetector:
    """Thin wrapper around ImageAnnotatorClient.text_detection()."""

    def __init__(self, client: Optional[Any] = None):
        """
        Args:
            client: optional pre-built ImageAnnotatorClient
        """
        if client is not None:
            self.client = client
            return

        if not VISION_AVAILABLE:
            raise RuntimeError(
                "google-cloud-vision not installed. "
                "Install with: pip install google-cloud-vision"
            )

        creds_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
        if not creds_path:
            logger.warning(
                "GOOGLE_APPLICATION_CREDENTIALS not set. "
                "Set it to your service account JSON file path."
            )
        elif not os.path.exists(creds_path):
            logger.warning(f"GOOGLE_APPLICATION_CREDENTIALS file not found: {creds_path}")

        self.client = vision.ImageAnnotatorClient()
        logger.info("VisionTextDetector initialized")

    def detect(self, image_bytes: bytes) -> Dict[str, Any]:
        """Run text detection on raw image bytes.

        Returns:
            Response dict: success, text, individualWords, wordCount, processingTime
        """
        start = time.time()

        response = self.client.text_detection(image=vision.Image(content=image_bytes))
        if getattr(response, "error", None) is not None and response.error.message:
            raise RuntimeError(f"Vision API error: {response.error.message}")

        annotations = list(response.text_annotations or [])
        if not annotations:
            logger.debug("No text detected in image")
            return {
                "success": True,
                "text": "",
                "individualWords": [],
                "wordCount": 0,
                "message": "No text detected in image",
                "processingTime": (time.time() - start) * 1000,
            }

        full_text = annotations[0].description or ""
        words = [a.description for a in annotations[1:] if (a.description or "").strip()]
        elapsed_ms = (time.time() - start) * 1000
        logger.info(f"OCR: {len(words)} words in {elapsed_ms:.0f}ms: {words}")

        return {
            "success": True,
            "text": full_text,
            "individualWords": words,
            "wordCount": len(annotations) - 1,
            "processingTime": elapsed_ms,
        }


_detector: Optional[VisionTextDetector] = None


def get_vision_detector() -> Optional[VisionTextDetector]:
    """Get or create the process-wide Vision detector (None if unavailable)."""
    global _detector
    if _detector is None:
        try:
            _detector = VisionTextDetector()
        except Exception as e:
            logger.error(f"Failed to initialize Vision OCR: {e}")
            return None
    return _detector


def reset_vision_detector() -> None:
    global _detector
    _detector = None
