"""Parallel recognition engine: bounded OCR jobs with first-match-wins abort.

Each detected plate region becomes a RecognitionJob. At most
``max_concurrent`` jobs run at once; the rest wait in a FIFO queue and are
started as running jobs finish. A job runs:

    pre-check -> OCR request -> post-check -> validate -> match callback

The first job whose match callback claims the session's match calls
``abort_all()``: the abort flag is set, every other running job's OCR request
is cancelled and the queue is purged (each purged job resolves as ABORTED).

Everything runs on one asyncio loop, so flag checks and slot accounting
between awaits are atomic.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, Tuple

from services.errors import OCRRequestError
from services.matching.validator import NO_MATCH, validate
from services.profiler import profiler
from services.recognition.session import SessionState

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 10


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ABORTED, JobStatus.FAILED)


@dataclass
class RecognitionJob:
    """One cropped plate region waiting for OCR."""

    image: bytes
    object_id: int
    detection_index: int = 0
    confidence: float = 0.0
    created_at: float = field(default_factory=time.time)
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    status: JobStatus = JobStatus.QUEUED
    _ocr_task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    def cancel(self) -> bool:
        """Cancel the in-flight OCR request, if any.

        Returns:
            True if a pending request was cancelled
        """
        task = self._ocr_task
        if task is not None and not task.done():
            task.cancel()
            return True
        return False


@dataclass
class RecognitionResult:
    """Terminal outcome of a job."""

    job_id: str
    object_id: int
    status: JobStatus
    text: str = ""
    matched: str = NO_MATCH
    announced: bool = False
    reason: Optional[str] = None
    duration_ms: float = 0.0
    trigger_latency_ms: Optional[float] = None

    @property
    def is_match(self) -> bool:
        return self.matched != NO_MATCH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "object_id": self.object_id,
            "status": self.status.value,
            "text": self.text,
            "matched": self.matched,
            "announced": self.announced,
            "reason": self.reason,
            "duration_ms": round(self.duration_ms, 1),
        }


# (candidate, job, trigger_immediate) -> True if this job won and announced
MatchCallback = Callable[[str, RecognitionJob, Callable[[], None]], Awaitable[bool]]


class ParallelRecognitionEngine:
    """Bounded-concurrency OCR dispatcher."""

    def __init__(
        self,
        ocr_client,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        on_match: Optional[MatchCallback] = None,
        ops_logger=None,
    ):
        """
        Args:
            ocr_client: object with ``async recognize(image) -> OCRResponse``
            max_concurrent: max jobs running at once
            on_match: awaited when a job validates a candidate
            ops_logger: optional OperationalLogger for aborted/failed events
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

        self.ocr_client = ocr_client
        self.max_concurrent = max_concurrent
        self.on_match = on_match
        self.ops_logger = ops_logger

        self.session: Optional[SessionState] = None

        self._aborted = False
        self._abort_reason: Optional[str] = None
        self._running: Dict[str, RecognitionJob] = {}
        self._queue: Deque[Tuple[RecognitionJob, asyncio.Future]] = deque()
        self._tasks: Set[asyncio.Task] = set()

        self._stats = {
            "submitted": 0,
            "completed": 0,
            "aborted": 0,
            "failed": 0,
            "matches": 0,
            "peak_running": 0,
        }

    # ------------------------------------------------------------------
    # Session binding / abort flag
    # ------------------------------------------------------------------

    def bind_session(self, session: Optional[SessionState]) -> None:
        """Point the engine at a new session and clear the abort flag."""
        self.session = session
        self.reset()

    def reset(self) -> None:
        self._aborted = False
        self._abort_reason = None

    def is_aborted(self) -> bool:
        if self._aborted:
            return True
        session = self.session
        return session is not None and (session.match_found or not session.active)

    @property
    def abort_reason(self) -> Optional[str]:
        return self._abort_reason

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    # ------------------------------------------------------------------
    # Submission / scheduling
    # ------------------------------------------------------------------

    def submit(self, job: RecognitionJob) -> asyncio.Future:
        """Run the job now if a slot is free, otherwise queue it.

        Returns:
            Future resolved with the job's RecognitionResult (never raises)
        """
        future = asyncio.get_running_loop().create_future()
        self._stats["submitted"] += 1

        if len(self._running) < self.max_concurrent:
            self._start(job, future)
        else:
            job.status = JobStatus.QUEUED
            self._queue.append((job, future))
            logger.debug(
                f"Job {job.job_id} queued ({len(self._queue)} waiting, "
                f"{len(self._running)} running)"
            )
        return future

    async def process_pipeline(self, job: RecognitionJob) -> RecognitionResult:
        return await self.submit(job)

    def _start(self, job: RecognitionJob, future: asyncio.Future) -> None:
        job.status = JobStatus.RUNNING
        self._running[job.job_id] = job
        self._stats["peak_running"] = max(self._stats["peak_running"], len(self._running))

        task = asyncio.create_task(self._run_job(job, future), name=f"ocr-job-{job.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _advance_queue(self) -> None:
        while self._queue and len(self._running) < self.max_concurrent:
            job, future = self._queue.popleft()
            if future.done():
                continue
            self._start(job, future)

    async def _run_job(self, job: RecognitionJob, future: asyncio.Future) -> None:
        result: Optional[RecognitionResult] = None
        try:
            result = await self._execute(job)
        except asyncio.CancelledError:
            result = self._result(job, JobStatus.ABORTED, reason="job task cancelled")
            raise
        except OCRRequestError as e:
            logger.warning(f"Job {job.job_id} failed: {e}")
            result = self._result(job, JobStatus.FAILED, reason=str(e))
        except Exception as e:
            logger.exception(f"Job {job.job_id} failed: {e}")
            result = self._result(job, JobStatus.FAILED, reason=str(e))
        finally:
            # Slot release and queue advancement must always happen
            self._running.pop(job.job_id, None)
            job._ocr_task = None
            if result is None:
                result = self._result(job, JobStatus.FAILED, reason="no result")
            job.status = result.status
            self._record(result)
            if not future.done():
                future.set_result(result)
            self._advance_queue()

    async def _execute(self, job: RecognitionJob) -> RecognitionResult:
        # 1. Pre-check
        if self.is_aborted():
            return self._result(job, JobStatus.ABORTED, reason="aborted before OCR")

        # 2. OCR request as its own task so cancel() only unwinds the request
        ocr_task = asyncio.ensure_future(self.ocr_client.recognize(job.image))
        job._ocr_task = ocr_task
        ocr_start = time.time()
        try:
            await asyncio.wait({ocr_task})
        except asyncio.CancelledError:
            ocr_task.cancel()
            raise
        profiler.record("ocr_api", time.time() - ocr_start)

        if ocr_task.cancelled():
            return self._result(job, JobStatus.ABORTED, reason="OCR request cancelled")
        if self.is_aborted():
            # Drain the result so the finished task does not log an unretrieved exception
            ocr_task.exception()
            return self._result(job, JobStatus.ABORTED, reason="aborted during OCR")

        response = ocr_task.result()  # re-raises OCRRequestError -> FAILED

        if not response.success:
            logger.debug(f"Job {job.job_id}: OCR reported no success")
            return self._result(job, JobStatus.COMPLETED, reason="ocr unsuccessful")

        # 3. Validation
        whitelist = self.session.whitelist if self.session is not None else ()
        matched = validate(response.text, response.individual_words, whitelist)
        logger.debug(f"Job {job.job_id}: OCR '{response.text}' -> {matched}")

        result = self._result(job, JobStatus.COMPLETED, text=response.text, matched=matched)
        if matched == NO_MATCH or self.on_match is None:
            return result

        # 4. Match check
        def trigger_immediate() -> None:
            result.trigger_latency_ms = (time.time() - job.created_at) * 1000
            logger.info(
                f"⚡ Match trigger for {matched} after {result.trigger_latency_ms:.0f}ms "
                f"(job {job.job_id})"
            )

        result.announced = bool(await self.on_match(matched, job, trigger_immediate))
        result.duration_ms = (time.time() - job.created_at) * 1000
        return result

    def _result(
        self,
        job: RecognitionJob,
        status: JobStatus,
        text: str = "",
        matched: str = NO_MATCH,
        reason: Optional[str] = None,
    ) -> RecognitionResult:
        return RecognitionResult(
            job_id=job.job_id,
            object_id=job.object_id,
            status=status,
            text=text,
            matched=matched,
            reason=reason,
            duration_ms=(time.time() - job.created_at) * 1000,
        )

    def _record(self, result: RecognitionResult) -> None:
        request_id = self.session.request_id if self.session is not None else None
        if result.status == JobStatus.ABORTED:
            self._stats["aborted"] += 1
            logger.debug(f"Job {result.job_id} aborted: {result.reason}")
            if self.ops_logger is not None:
                self.ops_logger.log_aborted(request_id, result.job_id, result.reason or "")
        elif result.status == JobStatus.FAILED:
            self._stats["failed"] += 1
            if self.ops_logger is not None:
                self.ops_logger.log_failure(request_id, result.job_id, result.reason or "")
        else:
            self._stats["completed"] += 1
            if result.announced:
                self._stats["matches"] += 1

    # ------------------------------------------------------------------
    # Abort
    # ------------------------------------------------------------------

    def abort_all(self, reason: str = "match found", exclude: Optional[str] = None) -> Dict[str, int]:
        """Set the abort flag, cancel running OCR requests and purge the queue.

        Args:
            reason: logged abort reason
            exclude: job id to leave alone (the winner)

        Returns:
            {"cancelled": n, "purged": n}
        """
        self._aborted = True
        self._abort_reason = reason

        cancelled = 0
        for job in list(self._running.values()):
            if job.job_id == exclude:
                continue
            if job.cancel():
                cancelled += 1

        purged = 0
        while self._queue:
            job, future = self._queue.popleft()
            job.status = JobStatus.ABORTED
            result = self._result(job, JobStatus.ABORTED, reason=f"purged: {reason}")
            self._record(result)
            if not future.done():
                future.set_result(result)
            purged += 1

        if cancelled or purged:
            logger.info(f"🛑 Abort ({reason}): cancelled {cancelled} running, purged {purged} queued")
        return {"cancelled": cancelled, "purged": purged}

    async def wait_idle(self) -> None:
        """Wait until no job is running or queued."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Abort everything and wait for running jobs to settle."""
        self.abort_all("shutdown")
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "running": len(self._running),
            "queued": len(self._queue),
            "max_concurrent": self.max_concurrent,
            "aborted_flag": self.is_aborted(),
            "abort_reason": self._abort_reason,
        }
