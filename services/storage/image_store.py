"""Captured crop persistence.

Files are named ``detected_<epoch_ms>_conf<NN>.jpg`` so the listing can
recover timestamp and confidence without a sidecar index.
"""

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)

FILENAME_PATTERN = re.compile(r"^detected_(\d+)_conf(\d+)\.jpg$")


def capture_filename(confidence: float, timestamp: Optional[float] = None) -> str:
    ts_ms = int((time.time() if timestamp is None else timestamp) * 1000)
    return f"detected_{ts_ms}_conf{int(round(confidence * 100))}.jpg"


class ImageStore:
    """Writes captured images under one directory."""

    def __init__(self, capture_dir: str = "output/captured_images"):
        self.capture_dir = Path(capture_dir)
        self._pending: Set[asyncio.Task] = set()
        self.saved = 0
        self.failed = 0

    def _safe_path(self, filename: str) -> Path:
        name = Path(filename).name
        if not name or name != filename:
            raise ValueError(f"Invalid filename: {filename!r}")
        return self.capture_dir / name

    def save(self, image: bytes, filename: str) -> Path:
        """Write image bytes (blocking).

        Raises:
            ValueError: if filename is empty or contains a path
            OSError: on write failure
        """
        path = self._safe_path(filename)
        self.capture_dir.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(image)
        self.saved += 1
        logger.debug(f"Image saved: {path} ({len(image)} bytes)")
        return path

    async def _save_logged(self, image: bytes, filename: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.save, image, filename)
        except (OSError, ValueError) as e:
            self.failed += 1
            logger.warning(f"Failed to save image {filename}: {e}")

    def save_async(self, image: bytes, filename: str) -> asyncio.Task:
        """Fire-and-forget save; failures are only logged."""
        task = asyncio.create_task(self._save_logged(image, filename))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def list_images(self) -> List[Dict]:
        """Captured images, newest first."""
        if not self.capture_dir.exists():
            return []

        images = []
        for path in self.capture_dir.iterdir():
            match = FILENAME_PATTERN.match(path.name)
            if not match:
                continue
            images.append(
                {
                    "name": path.name,
                    "path": f"/captured_images/{path.name}",
                    "timestamp": int(match.group(1)),
                    "confidence": int(match.group(2)),
                }
            )
        images.sort(key=lambda item: item["timestamp"], reverse=True)
        return images
