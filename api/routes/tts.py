"""Text-to-speech endpoint returning MP3 audio."""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from services.errors import TTSError
from services.tts.google_tts import get_tts_service

logger = logging.getLogger(__name__)
router = APIRouter()

_tts = None


def set_tts_service(service):
    global _tts
    _tts = service


class TTSRequest(BaseModel):
    text: Optional[str] = None


@router.post("/tts")
async def text_to_speech(body: TTSRequest):
    if not body.text:
        return JSONResponse({"success": False, "error": "Missing text parameter"}, status_code=400)

    service = _tts if _tts is not None else get_tts_service()
    if service is None:
        return JSONResponse({"success": False, "error": "TTS service unavailable"}, status_code=503)

    logger.info(f"🔊 TTS request: '{body.text}'")
    try:
        audio = await service.synthesize(body.text)
    except TTSError as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)

    if not audio:
        return JSONResponse(
            {"success": False, "error": "No audio content received from TTS API"},
            status_code=500,
        )
    return Response(content=audio, media_type="audio/mpeg")
