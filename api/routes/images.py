"""Captured image save / list endpoints."""

import binascii
import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config.pipeline_config import PipelineConfig
from services.ocr.vision_ocr import decode_image_payload
from services.storage.image_store import ImageStore

logger = logging.getLogger(__name__)
router = APIRouter()

_store: Optional[ImageStore] = None


def set_image_store(store: Optional[ImageStore]):
    global _store
    _store = store


def _get_store() -> ImageStore:
    global _store
    if _store is None:
        _store = ImageStore(PipelineConfig.CAPTURE_DIR)
    return _store


class SaveImageRequest(BaseModel):
    image: Optional[str] = None
    filename: Optional[str] = None


@router.post("/images")
def save_image(body: SaveImageRequest):
    if not body.image or not body.filename:
        return JSONResponse(
            {"success": False, "error": "Missing image or filename"}, status_code=400
        )

    try:
        data = decode_image_payload(body.image)
        path = _get_store().save(data, body.filename)
    except (binascii.Error, ValueError) as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=400)
    except OSError as e:
        logger.error(f"Error saving image: {e}")
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)

    logger.info(f"✅ Image saved: {path}")
    return {
        "success": True,
        "path": f"/captured_images/{path.name}",
        "filename": path.name,
        "size": len(data),
    }


@router.get("/images")
def list_images():
    try:
        images = _get_store().list_images()
    except OSError as e:
        logger.error(f"Error listing images: {e}")
        return JSONResponse(
            {"success": False, "error": "Failed to list images", "images": []},
            status_code=500,
        )
    return {"success": True, "count": len(images), "images": images}
