"""Wires the bus finder's collaborators together from PipelineConfig.

Server and CLI both build one BusFinder, ``await initialize()`` it at
startup and ``await dispose()`` it at shutdown. Every collaborator is
injected into the orchestrator/engine; nothing below is a process-wide
singleton except the BusFinder registered for the API routes.
"""

import asyncio
import logging
from typing import Optional

from config.pipeline_config import PipelineConfig
from services.camera.video_source import VideoSource
from services.detector import create_detector, postprocess_opts_from_config
from services.errors import ModelLoadError
from services.logging.operational_logger import EventSeverity, get_operational_logger
from services.ocr.ocr_client import OCRClient
from services.pipeline.orchestrator import PipelineOrchestrator
from services.pipeline.processor import FrameProcessor
from services.pipeline.rate_controller import AdaptiveRateController
from services.recognition.engine import ParallelRecognitionEngine
from services.storage.image_store import ImageStore
from services.tts.announcer import BusAnnouncer, FileAudioSink
from services.tts.google_tts import get_tts_service

logger = logging.getLogger(__name__)


class BusFinder:
    """Container for one configured pipeline and its lifecycle."""

    def __init__(
        self,
        detector,
        ocr_client,
        engine: ParallelRecognitionEngine,
        orchestrator: PipelineOrchestrator,
        frame_source=None,
        tts=None,
        image_store: Optional[ImageStore] = None,
        ops_logger=None,
    ):
        self.detector = detector
        self.ocr_client = ocr_client
        self.engine = engine
        self.orchestrator = orchestrator
        self.frame_source = frame_source
        self.tts = tts
        self.image_store = image_store
        self.ops_logger = ops_logger

    @classmethod
    def from_config(
        cls,
        channel=None,
        video_source: Optional[str] = None,
        model_path: Optional[str] = None,
        frame_source=None,
    ) -> "BusFinder":
        """Build every collaborator from PipelineConfig.

        Args:
            channel: outbound response channel (None for the CLI)
            video_source: override PipelineConfig.VIDEO_SOURCE
            model_path: override PipelineConfig.MODEL_PATH
            frame_source: pre-built frame source (overrides video_source)
        """
        ops_logger = get_operational_logger(log_dir=PipelineConfig.LOG_DIR)

        detector = create_detector(model_path=model_path)
        processor = FrameProcessor(
            detector,
            opts=postprocess_opts_from_config(),
            conf_threshold=PipelineConfig.CONF_THRESHOLD,
            iou_threshold=PipelineConfig.IOU_THRESHOLD,
        )

        ocr_client = OCRClient(PipelineConfig.OCR_URL, timeout=PipelineConfig.OCR_TIMEOUT_S)
        engine = ParallelRecognitionEngine(
            ocr_client,
            max_concurrent=PipelineConfig.MAX_CONCURRENT_OCR,
            ops_logger=ops_logger,
        )

        tts = get_tts_service(language_code=PipelineConfig.TTS_LANGUAGE)
        announcer = None
        if tts is not None:
            announcer = BusAnnouncer(tts, FileAudioSink(PipelineConfig.TTS_OUTPUT_DIR))
        else:
            logger.warning("No TTS backend available, matches will not be announced")

        if frame_source is None:
            frame_source = VideoSource(video_source or PipelineConfig.VIDEO_SOURCE)

        image_store = ImageStore(PipelineConfig.CAPTURE_DIR)

        orchestrator = PipelineOrchestrator(
            detector=detector,
            engine=engine,
            frame_source=frame_source,
            processor=processor,
            announcer=announcer,
            channel=channel,
            image_store=image_store,
            ops_logger=ops_logger,
            rate_controller=AdaptiveRateController(
                window=PipelineConfig.RATE_WINDOW,
                upper_ms=PipelineConfig.RATE_UPPER_MS,
                lower_ms=PipelineConfig.RATE_LOWER_MS,
                max_skip=PipelineConfig.MAX_FRAME_SKIP,
            ),
            sample_interval_ms=PipelineConfig.SAMPLE_INTERVAL_MS,
            cooldown_s=PipelineConfig.OBJECT_COOLDOWN_S,
            identity_grid=PipelineConfig.IDENTITY_GRID,
            default_whitelist=PipelineConfig.DEFAULT_WHITELIST,
            save_crops=PipelineConfig.SAVE_CROPS,
            jpeg_quality=PipelineConfig.CROP_JPEG_QUALITY,
            max_frames=PipelineConfig.MAX_FRAMES,
        )

        return cls(
            detector=detector,
            ocr_client=ocr_client,
            engine=engine,
            orchestrator=orchestrator,
            frame_source=frame_source,
            tts=tts,
            image_store=image_store,
            ops_logger=ops_logger,
        )

    async def initialize(self) -> bool:
        """Load the model and warm up OCR/TTS.

        Model load failure leaves the pipeline in 'not-ready' instead of raising.

        Returns:
            True if the detector is ready
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.detector.initialize)
        except ModelLoadError as e:
            logger.error(f"❌ Detector not ready: {e}")
            if self.ops_logger is not None:
                self.ops_logger.log_system_event(
                    f"Model load failed: {e}", severity=EventSeverity.CRITICAL
                )

        if self.frame_source is not None and hasattr(self.frame_source, "open"):
            await loop.run_in_executor(None, self.frame_source.open)

        warmups = [self.ocr_client.warmup()]
        if self.tts is not None:
            warmups.append(self.tts.warmup())
        await asyncio.gather(*warmups, return_exceptions=True)

        ready = self.detector.is_ready()
        if self.ops_logger is not None:
            self.ops_logger.log_system_event(
                f"Bus finder started ({self.orchestrator.status.value})",
                details={"model": self.detector.get_status()},
            )
        return ready

    async def dispose(self) -> None:
        await self.orchestrator.shutdown()
        await self.ocr_client.dispose()
        if self.tts is not None:
            self.tts.dispose()
        if self.frame_source is not None and hasattr(self.frame_source, "release"):
            self.frame_source.release()
        self.detector.dispose()
        logger.info("Bus finder disposed")


# Registered by the API server on startup
_bus_finder: Optional[BusFinder] = None


def set_bus_finder(bus_finder: Optional[BusFinder]) -> None:
    global _bus_finder
    _bus_finder = bus_finder


def get_bus_finder() -> Optional[BusFinder]:
    return _bus_finder
