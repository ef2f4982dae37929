"""Bus arrival announcements: TTS synthesis handed to an audio sink."""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from services.errors import TTSError
from services.profiler import profiler

logger = logging.getLogger(__name__)


def format_announcement(identifier: str) -> str:
    return f"Bus {identifier} has arrived."


class AudioSink(ABC):
    """Where synthesized audio goes (speaker, file, websocket...)."""

    @abstractmethod
    async def play(self, audio: bytes, label: str) -> Optional[str]:
        """Deliver audio; returns a locator (path/url) if the sink has one."""


class FileAudioSink(AudioSink):
    """Writes each announcement as an MP3 under output_dir."""

    def __init__(self, output_dir: str = "audio_output"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _write(self, audio: bytes, label: str) -> str:
        filepath = self.output_dir / f"bus_{label}_{uuid.uuid4().hex[:8]}.mp3"
        with open(filepath, "wb") as out:
            out.write(audio)
        return str(filepath)

    async def play(self, audio: bytes, label: str) -> Optional[str]:
        loop = asyncio.get_running_loop()
        path = await loop.run_in_executor(None, self._write, audio, label)
        logger.info(f"Saved announcement audio: {path}")
        return path


@dataclass
class Announcement:
    identifier: str
    text: str
    audio_bytes: int
    location: Optional[str]
    latency_ms: float


class BusAnnouncer:
    """Formats, synthesizes and plays a bus arrival announcement."""

    def __init__(self, tts, sink: Optional[AudioSink] = None):
        """
        Args:
            tts: object with ``async synthesize(text) -> bytes``
            sink: audio destination (None = synthesize only)
        """
        self.tts = tts
        self.sink = sink
        self.announcements = 0

    async def announce(self, identifier: str) -> Announcement:
        """Synthesize and play the announcement for one bus.

        Raises:
            TTSError: if synthesis fails
        """
        text = format_announcement(identifier)
        start = time.time()

        with profiler.profile("tts"):
            audio = await self.tts.synthesize(text)
        if not audio:
            raise TTSError(f"TTS returned no audio for '{text}'")

        location = None
        if self.sink is not None:
            location = await self.sink.play(audio, identifier)

        self.announcements += 1
        latency_ms = (time.time() - start) * 1000
        logger.info(f"🔊 Announced: '{text}' ({len(audio)} bytes, {latency_ms:.0f}ms)")
        return Announcement(
            identifier=identifier,
            text=text,
            audio_bytes=len(audio),
            location=location,
            latency_ms=latency_ms,
        )
