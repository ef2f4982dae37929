"""OCR endpoint backed by Google Cloud Vision text detection."""

import asyncio
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.ocr.vision_ocr import decode_image_payload, get_vision_detector

logger = logging.getLogger(__name__)
router = APIRouter()

# Nginx-style "client closed request"
CLIENT_CLOSED_REQUEST = 499

# Module-level detector override (tests / custom backends)
_detector = None


def set_ocr_detector(detector):
    global _detector
    _detector = detector


def _get_detector():
    return _detector if _detector is not None else get_vision_detector()


class OCRRequest(BaseModel):
    image: Optional[str] = None


def _aborted_response() -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": "Request aborted", "aborted": True},
        status_code=CLIENT_CLOSED_REQUEST,
    )


@router.post("/ocr")
async def run_ocr(body: OCRRequest, request: Request):
    if not body.image:
        return JSONResponse({"success": False, "error": "No image provided"}, status_code=400)

    if await request.is_disconnected():
        logger.debug("OCR request aborted by client before processing")
        return _aborted_response()

    detector = _get_detector()
    if detector is None:
        return JSONResponse({"success": False, "error": "OCR backend unavailable"}, status_code=503)

    try:
        image_bytes = decode_image_payload(body.image)
    except (binascii.Error, ValueError) as e:
        return JSONResponse({"success": False, "error": f"Invalid image data: {e}"}, status_code=400)

    loop = asyncio.get_running_loop()
    try:
        result = await loop.run_in_executor(None, detector.detect, image_bytes)
    except Exception as e:
        logger.error(f"OCR error: {e}")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)

    if await request.is_disconnected():
        logger.debug("OCR request aborted by client during processing")
        return _aborted_response()

    return result
