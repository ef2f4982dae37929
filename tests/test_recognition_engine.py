import asyncio

import pytest

from services.errors import OCRRequestError
from services.ocr.ocr_client import OCRResponse
from services.recognition.engine import (
    JobStatus,
    ParallelRecognitionEngine,
    RecognitionJob,
)
from services.recognition.session import MatchTarget, SessionState


class FakeOCR:
    """OCR stand-in: the job image bytes are the text it "reads"."""

    def __init__(self, delay=0.01, delays=None):
        self.delay = delay
        self.delays = delays or {}
        self.calls = 0
        self.active = 0
        self.peak = 0
        self.cancelled = 0

    async def recognize(self, image):
        text = image.decode()
        self.calls += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delays.get(text, self.delay))
            if text == "FAIL":
                raise OCRRequestError("OCR API error: 500")
            if text == "EMPTY":
                return OCRResponse(success=False)
            return OCRResponse(success=True, text=text, individual_words=[text])
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.active -= 1


def _session(targets=("50",), whitelist=("50", "34A", "382W")):
    return SessionState(MatchTarget.create(targets, whitelist))


def _job(text, object_id=0):
    return RecognitionJob(image=text.encode(), object_id=object_id)


def _engine(ocr, max_concurrent=10):
    engine = ParallelRecognitionEngine(ocr, max_concurrent=max_concurrent)
    session = _session()
    engine.bind_session(session)
    return engine, session


def _announcing_callback(engine, session, announcements):
    """Match callback that mirrors the orchestrator's claim-then-abort sequence."""

    async def on_match(candidate, job, trigger_immediate):
        if not session.claim_match(candidate):
            return False
        trigger_immediate()
        engine.abort_all("match found", exclude=job.job_id)
        await asyncio.sleep(0)
        announcements.append(candidate)
        return True

    return on_match


def test_max_concurrent_must_be_positive():
    with pytest.raises(ValueError):
        ParallelRecognitionEngine(FakeOCR(), max_concurrent=0)


def test_concurrency_is_bounded_and_queue_drains():
    async def run():
        ocr = FakeOCR(delay=0.02)
        engine, _ = _engine(ocr, max_concurrent=3)

        futures = [engine.submit(_job(f"Z{i}", i)) for i in range(10)]
        assert engine.running_count == 3
        assert engine.queued_count == 7

        results = await asyncio.gather(*futures)
        return ocr, engine, results

    ocr, engine, results = asyncio.run(run())

    assert ocr.peak == 3
    assert ocr.calls == 10
    assert all(r.status == JobStatus.COMPLETED for r in results)
    stats = engine.get_stats()
    assert stats["peak_running"] == 3
    assert stats["completed"] == 10
    assert stats["running"] == 0
    assert stats["queued"] == 0


def test_no_match_result():
    async def run():
        engine, _ = _engine(FakeOCR())
        return await engine.process_pipeline(_job("XYZ9"))

    result = asyncio.run(run())

    assert result.status == JobStatus.COMPLETED
    assert result.text == "XYZ9"
    assert result.matched == "none"
    assert not result.is_match
    assert not result.announced


def test_unsuccessful_ocr_completes_without_match():
    async def run():
        engine, _ = _engine(FakeOCR())
        return await engine.process_pipeline(_job("EMPTY"))

    result = asyncio.run(run())

    assert result.status == JobStatus.COMPLETED
    assert result.matched == "none"


def test_abort_cancels_running_and_purges_queue():
    async def run():
        ocr = FakeOCR(delay=5.0)
        engine, _ = _engine(ocr, max_concurrent=2)

        futures = [engine.submit(_job(f"Q{i}", i)) for i in range(5)]
        await asyncio.sleep(0.01)
        counts = engine.abort_all("test")
        results = await asyncio.wait_for(asyncio.gather(*futures), timeout=2)
        return ocr, engine, counts, results

    ocr, engine, counts, results = asyncio.run(run())

    assert counts == {"cancelled": 2, "purged": 3}
    assert ocr.calls == 2
    assert ocr.cancelled == 2
    assert all(r.status == JobStatus.ABORTED for r in results)
    assert engine.get_stats()["aborted"] == 5
    assert engine.abort_reason == "test"


def test_aborted_engine_skips_ocr():
    async def run():
        ocr = FakeOCR()
        engine, _ = _engine(ocr)
        engine.abort_all("stop")
        result = await engine.process_pipeline(_job("50"))
        return ocr, result

    ocr, result = asyncio.run(run())

    assert result.status == JobStatus.ABORTED
    assert result.reason == "aborted before OCR"
    assert ocr.calls == 0


def test_inactive_session_counts_as_aborted():
    engine, session = _engine(FakeOCR())
    assert not engine.is_aborted()

    session.clear()
    assert engine.is_aborted()


def test_bind_session_resets_abort_flag():
    engine, _ = _engine(FakeOCR())
    engine.abort_all("old query")
    engine.bind_session(_session())

    assert not engine.is_aborted()
    assert engine.abort_reason is None


def test_failure_is_isolated_and_frees_slot():
    async def run():
        engine, _ = _engine(FakeOCR(), max_concurrent=1)
        first = engine.submit(_job("FAIL"))
        second = engine.submit(_job("Z1"))
        return engine, await first, await second

    engine, first, second = asyncio.run(run())

    assert first.status == JobStatus.FAILED
    assert "500" in first.reason
    assert second.status == JobStatus.COMPLETED
    assert engine.get_stats()["failed"] == 1


def test_ocr_request_failure_is_logged_as_warning(caplog):
    async def run():
        engine, _ = _engine(FakeOCR())
        return await engine.submit(_job("FAIL"))

    with caplog.at_level("WARNING", logger="services.recognition.engine"):
        result = asyncio.run(run())

    assert result.status == JobStatus.FAILED
    failures = [r for r in caplog.records if "failed" in r.getMessage()]
    assert [r.levelname for r in failures] == ["WARNING"]
    assert failures[0].exc_info is None


def test_first_match_wins_and_aborts_the_rest():
    async def run():
        ocr = FakeOCR(delays={"50": 0.01, "Z1": 5.0, "Z2": 5.0})
        engine, session = _engine(ocr, max_concurrent=2)
        announcements = []
        engine.on_match = _announcing_callback(engine, session, announcements)

        futures = [engine.submit(_job(t, i)) for i, t in enumerate(["50", "Z1", "Z2"])]
        results = await asyncio.wait_for(asyncio.gather(*futures), timeout=2)
        return ocr, announcements, results

    ocr, announcements, results = asyncio.run(run())

    winner, running, queued = results
    assert announcements == ["50"]
    assert winner.status == JobStatus.COMPLETED
    assert winner.announced
    assert winner.trigger_latency_ms is not None
    assert running.status == JobStatus.ABORTED
    assert queued.status == JobStatus.ABORTED
    assert queued.reason.startswith("purged")
    assert ocr.cancelled == 1


def test_two_simultaneous_matches_announce_once():
    async def run():
        ocr = FakeOCR(delay=0.02)
        engine, session = _engine(ocr, max_concurrent=10)
        announcements = []
        engine.on_match = _announcing_callback(engine, session, announcements)

        futures = [engine.submit(_job("50", i)) for i in range(2)]
        results = await asyncio.wait_for(asyncio.gather(*futures), timeout=2)
        return session, announcements, results

    session, announcements, results = asyncio.run(run())

    assert announcements == ["50"]
    assert sum(1 for r in results if r.announced) == 1
    loser = [r for r in results if not r.announced][0]
    assert loser.status in (JobStatus.ABORTED, JobStatus.COMPLETED)
    assert session.matched_identifier == "50"


def test_non_target_whitelist_match_is_not_announced():
    async def run():
        engine, session = _engine(FakeOCR())
        announcements = []
        engine.on_match = _announcing_callback(engine, session, announcements)
        return announcements, await engine.process_pipeline(_job("34A"))

    announcements, result = asyncio.run(run())

    assert result.matched == "34A"
    assert not result.announced
    assert announcements == []


def test_shutdown_settles_running_jobs():
    async def run():
        engine, _ = _engine(FakeOCR(delay=5.0), max_concurrent=2)
        futures = [engine.submit(_job(f"Q{i}", i)) for i in range(3)]
        await asyncio.sleep(0.01)
        await asyncio.wait_for(engine.shutdown(), timeout=2)
        return engine, [f.result() for f in futures]

    engine, results = asyncio.run(run())

    assert all(r.status == JobStatus.ABORTED for r in results)
    assert engine.running_count == 0
