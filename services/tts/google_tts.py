"""Google Cloud Text-to-Speech service for bus arrival announcements.

Synthesizes short English announcements to MP3 bytes. Falls back to gTTS
(Google Translate TTS) when Cloud TTS is unavailable.
"""

import asyncio
import io
import logging
import os
import time
from typing import Any, Optional, Union

from services.errors import TTSError

logger = logging.getLogger(__name__)

# Try to import Google Cloud TTS
GOOGLE_TTS_AVAILABLE = False
try:
    from google.cloud import texttospeech

    GOOGLE_TTS_AVAILABLE = True
except ImportError:
    logger.warning(
        "google-cloud-texttospeech not installed. "
        "Install with: pip install google-cloud-texttospeech"
    )

# Try to import gTTS as fallback
GTTS_AVAILABLE = False
try:
    from gtts import gTTS

    GTTS_AVAILABLE = True
except ImportError:
    logger.warning("gTTS not installed. Install with: pip install gtts")

WARMUP_TEXT = "Ready."


class GoogleTTSService:
    """Google Cloud TTS service (MP3 output)."""

    def __init__(
        self,
        language_code: str = "en-US",
        voice_name: Optional[str] = None,
        speaking_rate: float = 1.0,
        pitch: float = 0.0,
        client: Optional[Any] = None,
    ):
        """Initialize Google TTS service.

        Args:
            language_code: BCP-47 language code
            voice_name: Optional explicit voice (default: language's neutral voice)
            speaking_rate: Speech speed (0.25 to 4.0, default 1.0)
            pitch: Voice pitch (-20.0 to 20.0, default 0.0)
            client: optional pre-built TextToSpeechClient
        """
        if client is None:
            if not GOOGLE_TTS_AVAILABLE:
                raise RuntimeError(
                    "google-cloud-texttospeech not installed. "
                    "Install with: pip install google-cloud-texttospeech"
                )

            creds_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
            if not creds_path:
                logger.warning(
                    "GOOGLE_APPLICATION_CREDENTIALS not set. "
                    "Set it to your service account JSON file path."
                )
            elif not os.path.exists(creds_path):
                logger.warning(f"GOOGLE_APPLICATION_CREDENTIALS file not found: {creds_path}")

            client = texttospeech.TextToSpeechClient()

        self.client = client
        self.language_code = language_code
        self.voice_name = voice_name
        self.speaking_rate = speaking_rate
        self.pitch = pitch
        self._warmed_up = False

        logger.info(f"GoogleTTSService initialized ({language_code})")

    def generate(self, text: str) -> bytes:
        """Synthesize speech (blocking).

        Returns:
            MP3 audio bytes
        """
        synthesis_input = texttospeech.SynthesisInput(text=text)
        voice_kwargs = {
            "language_code": self.language_code,
            "ssml_gender": texttospeech.SsmlVoiceGender.NEUTRAL,
        }
        if self.voice_name:
            voice_kwargs["name"] = self.voice_name
        voice = texttospeech.VoiceSelectionParams(**voice_kwargs)
        audio_config = texttospeech.AudioConfig(
            audio_encoding=texttospeech.AudioEncoding.MP3,
            speaking_rate=self.speaking_rate,
            pitch=self.pitch,
        )

        try:
            response = self.client.synthesize_speech(
                input=synthesis_input, voice=voice, audio_config=audio_config
            )
        except Exception as e:
            logger.error(f"TTS generation failed: {e}")
            raise TTSError(f"TTS generation failed: {e}") from e

        return response.audio_content

    async def synthesize(self, text: str) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.generate, text)

    async def warmup(self) -> bool:
        """Synthesize a short phrase once so the first announcement is fast."""
        if self._warmed_up:
            return True
        start = time.time()
        try:
            await self.synthesize(WARMUP_TEXT)
            self._warmed_up = True
            logger.info(f"✅ TTS warmed up in {(time.time() - start) * 1000:.0f}ms")
        except TTSError as e:
            logger.warning(f"TTS warmup failed (non-critical): {e}")
        return self._warmed_up

    def is_ready(self) -> bool:
        return self.client is not None

    def dispose(self) -> None:
        self._warmed_up = False


class SimpleTTSService:
    """Simple TTS using gTTS (Google Translate TTS) - no API key needed."""

    def __init__(self, language_code: str = "en-US"):
        if not GTTS_AVAILABLE:
            raise RuntimeError("gTTS not installed. Install with: pip install gtts")

        # gTTS wants the bare language ('en'), not the BCP-47 tag
        self.lang = language_code.split("-")[0].lower()
        logger.info("SimpleTTSService initialized (gTTS)")

    def generate(self, text: str) -> bytes:
        try:
            buf = io.BytesIO()
            gTTS(text=text, lang=self.lang).write_to_fp(buf)
            return buf.getvalue()
        except Exception as e:
            logger.error(f"TTS generation failed: {e}")
            raise TTSError(f"TTS generation failed: {e}") from e

    async def synthesize(self, text: str) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.generate, text)

    async def warmup(self) -> bool:
        # Network-backed and uncached, nothing to warm
        return True

    def is_ready(self) -> bool:
        return True

    def dispose(self) -> None:
        pass


# Type alias for any TTS service
TTSService = Union[GoogleTTSService, SimpleTTSService]

# Global singleton
_tts_service: Optional[TTSService] = None


def get_tts_service(use_google_cloud: bool = True, language_code: str = "en-US") -> Optional[TTSService]:
    """Get or create TTS service.

    Args:
        use_google_cloud: If True, try Google Cloud TTS first
        language_code: Announcement language

    Returns:
        TTS service instance, or None if no backend is available
    """
    global _tts_service

    if _tts_service is not None:
        return _tts_service

    if use_google_cloud and GOOGLE_TTS_AVAILABLE:
        try:
            _tts_service = GoogleTTSService(language_code=language_code)
            return _tts_service
        except Exception as e:
            logger.warning(f"Google Cloud TTS failed, falling back to gTTS: {e}")

    if GTTS_AVAILABLE:
        try:
            _tts_service = SimpleTTSService(language_code=language_code)
            return _tts_service
        except Exception as e:
            logger.error(f"Failed to initialize gTTS: {e}")

    logger.error("No TTS service available")
    return None


def reset_tts_service():
    """Reset global TTS service."""
    global _tts_service
    _tts_service = None
