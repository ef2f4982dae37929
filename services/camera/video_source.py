"""Camera / file / RTSP frame source using OpenCV.

Small synchronous API: ``get_frame()`` returns the next BGR frame or None.
Files rewind on EOF; streams reconnect after repeated read failures.
"""

import logging
import time
from typing import Optional, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


def parse_source(source: Union[str, int]) -> Union[str, int]:
    """'0' -> 0 (camera index); anything else is a path or URL."""
    if isinstance(source, int):
        return source
    return int(source) if source.strip().isdigit() else source


class VideoSource:
    def __init__(
        self,
        source: Union[str, int],
        rewind_on_eof: bool = True,
        max_failures: int = 20,
        reconnect_delay_s: float = 1.0,
    ):
        """
        Args:
            source: camera index, file path or rtsp:// URL
            rewind_on_eof: loop video files
            max_failures: consecutive failed reads before reconnecting
            reconnect_delay_s: pause before reopening a stream
        """
        self.source = parse_source(source)
        self.rewind_on_eof = rewind_on_eof
        self.max_failures = max_failures
        self.reconnect_delay_s = reconnect_delay_s

        self.cap: Optional[cv2.VideoCapture] = None
        self._consecutive_failures = 0
        self.frames_read = 0
        self.reconnects = 0

    @property
    def is_stream(self) -> bool:
        return isinstance(self.source, str) and self.source.startswith(("rtsp://", "http://", "https://"))

    def _create_capture(self) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(self.source)
        if self.is_stream:
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # Minimize buffer lag
        return cap

    def open(self) -> bool:
        if self.cap is None or not self.cap.isOpened():
            self.cap = self._create_capture()
            self._consecutive_failures = 0
        opened = self.cap.isOpened()
        if opened:
            logger.info(f"Video source opened: {self.source}")
        else:
            logger.error(f"Failed to open video source: {self.source}")
        return opened

    def is_opened(self) -> bool:
        return self.cap is not None and self.cap.isOpened()

    def get_frame(self) -> Optional[np.ndarray]:
        if not self.is_opened() and not self.open():
            return None

        ok, frame = self.cap.read()
        if ok and frame is not None and frame.size > 0:
            self._consecutive_failures = 0
            self.frames_read += 1
            return frame

        self._consecutive_failures += 1

        if self.rewind_on_eof and not self.is_stream and not isinstance(self.source, int):
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ok, frame = self.cap.read()
            if ok and frame is not None and frame.size > 0:
                self._consecutive_failures = 0
                self.frames_read += 1
                return frame

        if self._consecutive_failures >= self.max_failures:
            logger.warning(
                f"{self.max_failures} consecutive read failures, reconnecting "
                f"{self.source} (attempt {self.reconnects + 1})"
            )
            self.release()
            time.sleep(self.reconnect_delay_s)
            self.reconnects += 1
            self.open()

        return None

    def release(self):
        if self.cap is not None:
            self.cap.release()
        self.cap = None
        self._consecutive_failures = 0
