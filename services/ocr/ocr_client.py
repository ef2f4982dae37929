"""Async OCR client.

Posts a cropped plate image to the OCR endpoint and returns the recognized
text and words. Cancelling the awaiting task cancels the HTTP request, which
is how recognition jobs abort in-flight OCR.
"""

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from services.errors import OCRRequestError

logger = logging.getLogger(__name__)

# 1x1 transparent PNG used to warm the endpoint
WARMUP_IMAGE = (
    "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk"
    "+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)


def to_data_url(image: bytes, mime: str = "image/jpeg") -> str:
    """Encode image bytes as a base64 data URL."""
    return f"data:{mime};base64,{base64.b64encode(image).decode('ascii')}"


@dataclass
class OCRResponse:
    """Parsed OCR endpoint response."""

    success: bool
    text: str = ""
    individual_words: List[str] = field(default_factory=list)
    word_count: Optional[int] = None
    processing_time_ms: float = 0.0

    @classmethod
    def from_json(cls, data: Dict[str, Any], elapsed_ms: float = 0.0) -> "OCRResponse":
        words = [w for w in (data.get("individualWords") or []) if str(w).strip()]
        return cls(
            success=bool(data.get("success", False)),
            text=data.get("text") or "",
            individual_words=[str(w) for w in words],
            word_count=data.get("wordCount"),
            processing_time_ms=elapsed_ms,
        )


class OCRClient:
    """httpx-based client for the /api/ocr endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            url: OCR endpoint URL
            timeout: per-request transport timeout (seconds)
            client: optional pre-built AsyncClient (tests inject a mock transport)
        """
        self.url = url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._warmed_up = False

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True

    def is_ready(self) -> bool:
        return self._warmed_up

    async def recognize(self, image: bytes) -> OCRResponse:
        """Run OCR on encoded image bytes.

        Raises:
            OCRRequestError: on transport errors or non-2xx responses
            asyncio.CancelledError: if the awaiting task is cancelled
        """
        await self.initialize()
        return await self._post(to_data_url(image))

    async def _post(self, data_url: str) -> OCRResponse:
        start = time.time()
        try:
            response = await self._client.post(self.url, json={"image": data_url})
        except httpx.HTTPError as e:
            raise OCRRequestError(f"OCR request failed: {e}") from e

        elapsed_ms = (time.time() - start) * 1000
        if response.status_code >= 400:
            raise OCRRequestError(
                f"OCR API error: {response.status_code} {response.reason_phrase}"
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise OCRRequestError(f"OCR API returned invalid JSON: {e}") from e

        return OCRResponse.from_json(payload, elapsed_ms)

    async def warmup(self) -> bool:
        """Send one tiny request so the first real call is warm.

        Failures are logged and non-critical.
        """
        if self._warmed_up:
            return True
        await self.initialize()
        try:
            await self._post(WARMUP_IMAGE)
            self._warmed_up = True
            logger.info("✅ OCR API warmed up successfully")
        except OCRRequestError as e:
            logger.warning(f"OCR warmup failed (non-critical): {e}")
        return self._warmed_up

    async def dispose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        self._warmed_up = False
