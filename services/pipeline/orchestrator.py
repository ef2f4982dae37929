"""Pipeline orchestrator: query sessions, the sampling loop and match handling.

One session at a time. ``start_session`` replaces the SessionState wholesale
and starts a fixed-interval sampling loop; each sampled frame goes through
the FrameProcessor and every new plate region becomes a RecognitionJob.

The first job that claims the session's match:
    trigger -> abort all other jobs -> stop sampling -> announce -> respond -> end session
"""

import asyncio
import contextlib
import logging
import time
import uuid
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional

from services.detector.preprocessor import crop_region, encode_jpeg
from services.errors import InferenceFailed, ModelNotReady, RenderingUnavailable, TTSError
from services.pipeline.processor import FrameProcessor
from services.pipeline.rate_controller import AdaptiveRateController
from services.profiler import profiler
from services.recognition.engine import (
    ParallelRecognitionEngine,
    RecognitionJob,
    RecognitionResult,
)
from services.recognition.session import MatchTarget, SessionState, object_identity
from services.storage.image_store import capture_filename

logger = logging.getLogger(__name__)


class OrchestratorStatus(str, Enum):
    NOT_READY = "not-ready"
    READY = "ready"
    SCANNING = "scanning"


class EndReason(str, Enum):
    MATCHED = "matched"
    CANCELLED = "cancelled"
    SUPERSEDED = "superseded"
    ERROR = "error"


class PipelineOrchestrator:
    """Drives detection and recognition for the current query."""

    def __init__(
        self,
        detector,
        engine: ParallelRecognitionEngine,
        frame_source,
        processor: Optional[FrameProcessor] = None,
        announcer=None,
        channel=None,
        image_store=None,
        ops_logger=None,
        rate_controller: Optional[AdaptiveRateController] = None,
        sample_interval_ms: int = 200,
        cooldown_s: float = 5.0,
        identity_grid: int = 32,
        default_whitelist: Iterable[str] = (),
        save_crops: bool = False,
        jpeg_quality: int = 90,
        max_frames: Optional[int] = None,
    ):
        """
        Args:
            detector: ObjectDetector (readiness + inference)
            engine: recognition engine; its match callback is bound here
            frame_source: object with ``get_frame() -> ndarray | None``
            processor: FrameProcessor (default: built around ``detector``)
            announcer: BusAnnouncer (None = no audio)
            channel: object with ``async send_response(result, request_id)``
            image_store: ImageStore used when ``save_crops`` is set
            ops_logger: OperationalLogger
            rate_controller: adaptive frame skipping
            sample_interval_ms: sampling loop interval
            cooldown_s: per-object OCR cooldown
            identity_grid: grid cell size for object identities
            default_whitelist: used when a query carries no whitelist
            save_crops: persist every crop sent to OCR
            jpeg_quality: crop encoding quality
            max_frames: stop sampling after this many processed frames
        """
        self.detector = detector
        self.engine = engine
        self.frame_source = frame_source
        self.processor = processor or FrameProcessor(detector)
        self.announcer = announcer
        self.channel = channel
        self.image_store = image_store
        self.ops_logger = ops_logger
        self.rate = rate_controller or AdaptiveRateController()

        self.sample_interval_ms = sample_interval_ms
        self.cooldown_s = cooldown_s
        self.identity_grid = identity_grid
        self.default_whitelist = list(default_whitelist)
        self.save_crops = save_crops
        self.jpeg_quality = jpeg_quality
        self.max_frames = max_frames

        self.engine.on_match = self._handle_match

        self.session: Optional[SessionState] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._error: Optional[str] = None
        self.frames_processed = 0
        self.jobs_submitted = 0
        self.last_match: Optional[str] = None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> OrchestratorStatus:
        if not self.detector.is_ready():
            return OrchestratorStatus.NOT_READY
        if self.session is not None and self.session.active:
            return OrchestratorStatus.SCANNING
        return OrchestratorStatus.READY

    def is_scanning(self) -> bool:
        return self.status == OrchestratorStatus.SCANNING

    def get_status(self) -> Dict[str, Any]:
        session = self.session
        return {
            "status": self.status.value,
            "model": self.detector.get_status(),
            "error": self._error or self.detector.last_error,
            "request_id": session.request_id if session else None,
            "targets": sorted(session.target.targets) if session else [],
            "frame_skip": self.rate.frame_skip,
            "avg_frame_ms": round(self.rate.average_ms, 1),
            "frames_processed": self.frames_processed,
            "jobs_submitted": self.jobs_submitted,
            "last_match": self.last_match,
            "engine": self.engine.get_stats(),
        }

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_session(
        self,
        targets: Iterable[str],
        request_id: Optional[str] = None,
        whitelist: Optional[Iterable[str]] = None,
    ) -> Optional[SessionState]:
        """Begin looking for ``targets``; a running session is superseded.

        Returns:
            The new SessionState, or None if the query could not start
        """
        request_id = request_id or uuid.uuid4().hex[:12]

        if self.session is not None:
            await self.end_session(EndReason.SUPERSEDED)

        if not self.detector.is_ready():
            self._error = self.detector.last_error or "Model not ready"
            logger.error(f"Cannot start session {request_id}: {self._error}")
            await self._send(f"Not ready: {self._error}", request_id)
            return None

        entries = list(whitelist) if whitelist else self.default_whitelist
        target = MatchTarget.create(targets, entries)
        if not target.targets:
            logger.warning(f"Query {request_id} has no valid bus numbers")
            await self._send("No valid bus number in query", request_id)
            return None

        session = SessionState(target=target, request_id=request_id)
        self.session = session
        self.engine.bind_session(session)
        self.rate.reset()
        self._error = None

        wanted = ", ".join(sorted(target.targets))
        logger.info(
            f"🔍 Session {request_id} started: looking for {wanted} "
            f"({len(target.whitelist)} whitelist entries)"
        )
        if self.ops_logger is not None:
            self.ops_logger.log_query(request_id, target.targets, len(target.whitelist))

        await self._send(f"Looking for bus {wanted}", request_id)
        self._loop_task = asyncio.create_task(self._run_loop(session), name=f"sampling-{request_id}")
        return session

    async def end_session(self, reason=EndReason.CANCELLED) -> None:
        """Stop sampling, abort remaining jobs and tear the session down."""
        session = self.session
        if session is None:
            return
        reason = EndReason(reason)

        self.session = None
        await self._stop_sampling()
        self.engine.abort_all(f"session {reason.value}")

        duration_s = time.time() - session.started_at
        session.clear()
        logger.info(f"Session {session.request_id} ended: {reason.value} ({duration_s:.1f}s)")
        if self.ops_logger is not None:
            self.ops_logger.log_session_end(session.request_id, reason.value, duration_s)

    async def _stop_sampling(self) -> None:
        task = self._loop_task
        self._loop_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def wait_until_idle(self) -> None:
        """Wait for the sampling loop and its in-flight jobs to finish (CLI helper)."""
        task = self._loop_task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.engine.wait_idle()

    async def shutdown(self) -> None:
        await self.end_session(EndReason.CANCELLED)
        await self.engine.shutdown()
        if self.image_store is not None:
            await self.image_store.flush()

    # ------------------------------------------------------------------
    # Sampling loop
    # ------------------------------------------------------------------

    async def _run_loop(self, session: SessionState) -> None:
        interval = self.sample_interval_ms / 1000.0
        tick = 0
        processed = 0

        while session.active and not session.match_found:
            started = time.time()
            tick += 1

            if self.rate.should_process(tick):
                await self.process_tick(session)
                processed += 1
                if self.max_frames is not None and processed >= self.max_frames:
                    logger.info(f"Reached max frames ({self.max_frames}), sampling stopped")
                    return

            if session is not self.session:
                return
            await asyncio.sleep(max(0.0, interval - (time.time() - started)))

    async def process_tick(self, session: SessionState) -> List[asyncio.Future]:
        """Run one frame through detection and submit new plate regions.

        Returns:
            Futures of the jobs submitted for this frame
        """
        start = time.time()
        frame = self.frame_source.get_frame()
        if frame is None:
            logger.debug("No frame available, skipping tick")
            return []

        try:
            detections, timing = self.processor.process_frame(frame)
        except ModelNotReady as e:
            self._error = str(e)
            logger.error(f"Model not ready: {e}")
            await self._send(f"Not ready: {e}", session.request_id)
            await self.end_session(EndReason.ERROR)
            return []
        except (RenderingUnavailable, InferenceFailed) as e:
            logger.warning(f"Frame skipped: {e}")
            return []

        self.frames_processed += 1
        futures = []
        if session.active and not session.match_found:
            futures = self._dispatch(session, frame, detections)

        duration_ms = (time.time() - start) * 1000
        profiler.record("detection_pipeline", duration_ms / 1000.0)
        self.rate.record(duration_ms)
        if detections:
            logger.debug(
                f"Frame: {len(detections)} detections, {len(futures)} jobs, "
                f"{duration_ms:.0f}ms (infer {timing['inference']:.0f}ms)"
            )
        return futures

    def _dispatch(self, session: SessionState, frame, detections) -> List[asyncio.Future]:
        futures = []
        for index, det in enumerate(detections):
            identity = object_identity(det.bbox, self.identity_grid)
            if not session.should_process(identity, self.cooldown_s):
                continue

            with profiler.profile("image_crop"):
                crop = crop_region(frame, det.bbox)
                if crop.size == 0:
                    continue
                try:
                    image = encode_jpeg(crop, self.jpeg_quality)
                except RenderingUnavailable as e:
                    logger.warning(f"Crop encoding failed: {e}")
                    continue

            if self.save_crops and self.image_store is not None:
                self.image_store.save_async(image, capture_filename(det.confidence))

            job = RecognitionJob(
                image=image,
                object_id=identity,
                detection_index=index,
                confidence=det.confidence,
            )
            session.mark_processing(identity)
            future = self.engine.submit(job)
            future.add_done_callback(partial(self._on_job_done, session, identity))
            futures.append(future)
            self.jobs_submitted += 1

            if self.ops_logger is not None:
                self.ops_logger.log_detection(session.request_id, job.job_id, det.confidence, det.bbox)
        return futures

    @staticmethod
    def _on_job_done(session: SessionState, identity: int, future: asyncio.Future) -> None:
        if session.active:
            session.mark_processed(identity)
        if future.cancelled():
            return
        result: RecognitionResult = future.result()
        logger.debug(f"Job {result.job_id} -> {result.status.value} ({result.matched})")

    # ------------------------------------------------------------------
    # Match handling
    # ------------------------------------------------------------------

    async def _handle_match(
        self, candidate: str, job: RecognitionJob, trigger_immediate: Callable[[], None]
    ) -> bool:
        """Engine match callback. True only for the job that wins the session."""
        session = self.session
        if session is None or session is not self.engine.session:
            return False
        if not session.claim_match(candidate):
            return False

        # Everything up to the announcement await runs without yielding
        trigger_immediate()
        self.engine.abort_all(f"match {candidate}", exclude=job.job_id)
        loop_task, self._loop_task = self._loop_task, None
        if loop_task is not None and not loop_task.done():
            loop_task.cancel()

        self.last_match = session.matched_identifier
        logger.info(f"🎯 Bus {candidate} matched (job {job.job_id})")
        if self.ops_logger is not None:
            self.ops_logger.log_match(session.request_id, candidate, job.job_id)

        try:
            if self.announcer is not None:
                announcement = await self.announcer.announce(candidate)
                if self.ops_logger is not None:
                    self.ops_logger.log_announcement(
                        session.request_id, candidate, announcement.latency_ms
                    )
        except TTSError as e:
            logger.error(f"Announcement failed for bus {candidate}: {e}")
        except Exception as e:
            # Audio sinks can fail with anything (disk, device, socket)
            logger.error(f"Announcement failed for bus {candidate}: {e}", exc_info=True)
        finally:
            # The session is already claimed: always answer and close it
            profiler.record("end_to_end", time.time() - job.created_at)
            await self._send(f"Bus {candidate} has arrived", session.request_id)
            if self.session is session:
                await self.end_session(EndReason.MATCHED)
        return True

    async def _send(self, result: str, request_id: Optional[str]) -> None:
        if self.channel is None:
            return
        try:
            await self.channel.send_response(result, request_id)
        except Exception as e:
            logger.warning(f"Failed to send response '{result}': {e}")
