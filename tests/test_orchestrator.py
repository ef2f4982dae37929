import asyncio
from types import SimpleNamespace

import numpy as np

from services.detector.base_detector import Detection
from services.errors import InferenceFailed, ModelNotReady
from services.ocr.ocr_client import OCRResponse
from services.pipeline.orchestrator import OrchestratorStatus, PipelineOrchestrator
from services.pipeline.rate_controller import AdaptiveRateController
from services.recognition.engine import JobStatus, ParallelRecognitionEngine, RecognitionJob
from services.recognition.session import MatchTarget, SessionState
from services.tts.announcer import AudioSink, BusAnnouncer

PLATE_A = Detection(bbox=(100.0, 100.0, 120.0, 40.0), confidence=0.9, class_id=0, class_name="busnumber")
PLATE_B = Detection(bbox=(400.0, 300.0, 120.0, 40.0), confidence=0.8, class_id=0, class_name="busnumber")


class FakeDetector:
    def __init__(self, ready=True, error=None):
        self.ready = ready
        self.error = error

    def is_ready(self):
        return self.ready

    def get_status(self):
        return "ready" if self.ready else "error"

    @property
    def last_error(self):
        return self.error


class FakeProcessor:
    def __init__(self, detections=(), error=None):
        self.detections = list(detections)
        self.error = error
        self.calls = 0

    def process_frame(self, frame):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.detections), {"preprocess": 1.0, "inference": 5.0, "postprocess": 1.0, "total": 7.0}


class FakeFrameSource:
    def get_frame(self):
        return np.zeros((480, 640, 3), dtype=np.uint8)


class FakeOCR:
    def __init__(self, text, delay=0.01):
        self.text = text
        self.delay = delay
        self.calls = 0

    async def recognize(self, image):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return OCRResponse(success=True, text=self.text, individual_words=[self.text])


class FakeChannel:
    def __init__(self):
        self.responses = []

    async def send_response(self, result, request_id=None):
        self.responses.append(result)


class FakeAnnouncer:
    def __init__(self):
        self.announced = []

    async def announce(self, identifier):
        self.announced.append(identifier)
        await asyncio.sleep(0)
        return SimpleNamespace(latency_ms=1.0)


def _build(text="50", detections=(PLATE_A,), detector=None, ocr_delay=0.01, announcer=None, **kwargs):
    ocr = FakeOCR(text, delay=ocr_delay)
    processor = FakeProcessor(detections)
    channel = FakeChannel()
    announcer = announcer or FakeAnnouncer()
    orchestrator = PipelineOrchestrator(
        detector or FakeDetector(),
        ParallelRecognitionEngine(ocr, max_concurrent=4),
        FakeFrameSource(),
        processor=processor,
        announcer=announcer,
        channel=channel,
        sample_interval_ms=10,
        default_whitelist=["50", "34A", "382W"],
        **kwargs,
    )
    return orchestrator, ocr, processor, channel, announcer


def _bind(orchestrator, targets=("50",)):
    session = SessionState(MatchTarget.create(targets, orchestrator.default_whitelist))
    orchestrator.session = session
    orchestrator.engine.bind_session(session)
    return session


def test_match_is_announced_once_and_ends_session():
    async def run():
        built = _build(detections=[PLATE_A, PLATE_B])
        orchestrator = built[0]
        session = await orchestrator.start_session(["50"], request_id="req-1")
        assert orchestrator.status == OrchestratorStatus.SCANNING
        await asyncio.wait_for(orchestrator.wait_until_idle(), timeout=2)
        return built, session

    (orchestrator, ocr, _, channel, announcer), session = asyncio.run(run())

    assert announcer.announced == ["50"]
    assert channel.responses == ["Looking for bus 50", "Bus 50 has arrived"]
    assert orchestrator.last_match == "50"
    assert orchestrator.session is None
    assert orchestrator.status == OrchestratorStatus.READY
    assert not session.active
    assert orchestrator.engine.get_stats()["matches"] == 1


def test_not_ready_detector_rejects_query():
    async def run():
        built = _build(detector=FakeDetector(ready=False, error="model missing"))
        session = await built[0].start_session(["50"])
        return built, session

    (orchestrator, _, processor, channel, _), session = asyncio.run(run())

    assert session is None
    assert channel.responses == ["Not ready: model missing"]
    assert orchestrator.status == OrchestratorStatus.NOT_READY
    assert processor.calls == 0


def test_query_without_bus_number_is_rejected():
    async def run():
        built = _build()
        return built, await built[0].start_session(["--"])

    (orchestrator, _, _, channel, _), session = asyncio.run(run())

    assert session is None
    assert channel.responses == ["No valid bus number in query"]
    assert orchestrator.session is None


def test_query_whitelist_includes_targets():
    async def run():
        orchestrator = _build(detections=[])[0]
        session = await orchestrator.start_session(["99"], whitelist=["12", "13"])
        await orchestrator.end_session("cancelled")
        return session

    session = asyncio.run(run())

    assert session.whitelist == ("12", "13", "99")


def test_new_query_supersedes_running_session():
    async def run():
        orchestrator, _, _, channel, _ = _build(detections=[])
        first = await orchestrator.start_session(["50"], request_id="a")
        second = await orchestrator.start_session(["34A"], request_id="b")
        state = (orchestrator.session, orchestrator.engine.session)
        await orchestrator.end_session("cancelled")
        return orchestrator, first, second, state, channel

    orchestrator, first, second, state, channel = asyncio.run(run())

    assert not first.active
    assert state == (second, second)
    assert not second.active
    assert orchestrator.status == OrchestratorStatus.READY
    assert channel.responses == ["Looking for bus 50", "Looking for bus 34A"]


def test_in_flight_and_cooldown_dedupe():
    async def run():
        orchestrator = _build(text="ZZ", cooldown_s=60.0)[0]
        session = _bind(orchestrator)

        first = await orchestrator.process_tick(session)
        second = await orchestrator.process_tick(session)
        results = await asyncio.gather(*first)
        third = await orchestrator.process_tick(session)
        return first, second, third, results

    first, second, third, results = asyncio.run(run())

    assert len(first) == 1
    assert second == []
    assert third == []
    assert results[0].status == JobStatus.COMPLETED


def test_zero_cooldown_resubmits_after_completion():
    async def run():
        orchestrator = _build(text="ZZ", cooldown_s=0.0)[0]
        session = _bind(orchestrator)

        first = await orchestrator.process_tick(session)
        await asyncio.gather(*first)
        return await orchestrator.process_tick(session), orchestrator

    again, orchestrator = asyncio.run(run())

    assert len(again) == 1
    assert orchestrator.jobs_submitted == 2


def test_model_not_ready_ends_session():
    async def run():
        orchestrator, _, processor, channel, _ = _build()
        processor.error = ModelNotReady("Model not initialized")
        session = _bind(orchestrator)
        futures = await orchestrator.process_tick(session)
        return orchestrator, session, futures, channel

    orchestrator, session, futures, channel = asyncio.run(run())

    assert futures == []
    assert orchestrator.session is None
    assert not session.active
    assert channel.responses == ["Not ready: Model not initialized"]


def test_inference_failure_skips_frame():
    async def run():
        orchestrator, _, processor, _, _ = _build()
        processor.error = InferenceFailed("delegate crashed")
        session = _bind(orchestrator)
        futures = await orchestrator.process_tick(session)
        return orchestrator, session, futures

    orchestrator, session, futures = asyncio.run(run())

    assert futures == []
    assert session.active
    assert orchestrator.frames_processed == 0


def test_max_frames_stops_sampling():
    async def run():
        orchestrator, _, processor, _, _ = _build(detections=[], max_frames=3)
        await orchestrator.start_session(["50"])
        await asyncio.wait_for(orchestrator.wait_until_idle(), timeout=2)
        return orchestrator, processor

    orchestrator, processor = asyncio.run(run())

    assert processor.calls == 3
    assert orchestrator.frames_processed == 3


def test_cancel_aborts_in_flight_jobs():
    async def run():
        orchestrator = _build(text="50", ocr_delay=5.0)[0]
        session = _bind(orchestrator)
        futures = await orchestrator.process_tick(session)
        await asyncio.sleep(0.01)
        await orchestrator.end_session("cancelled")
        return await asyncio.wait_for(asyncio.gather(*futures), timeout=2)

    results = asyncio.run(run())

    assert [r.status for r in results] == [JobStatus.ABORTED]


def test_rate_controller_adapts():
    rate = AdaptiveRateController(window=3, upper_ms=250, lower_ms=150, max_skip=3)

    for _ in range(10):
        rate.record(400)
    assert rate.frame_skip == 3
    assert rate.should_process(3)
    assert not rate.should_process(4)

    for _ in range(10):
        rate.record(50)
    assert rate.frame_skip == 1

    rate.record(200)
    rate.reset()
    assert rate.average_ms == 0.0


class SlowAnnouncer(FakeAnnouncer):
    async def announce(self, identifier):
        self.announced.append(identifier)
        await asyncio.sleep(0.05)
        return SimpleNamespace(latency_ms=50.0)


class SpeakingTTS:
    async def synthesize(self, text):
        return b"ID3audio"


class BrokenSink(AudioSink):
    async def play(self, audio, label):
        raise OSError("disk full")


def test_audio_sink_failure_still_answers_and_ends_session():
    announcer = BusAnnouncer(SpeakingTTS(), BrokenSink())

    async def run():
        built = _build(text="50", announcer=announcer)
        orchestrator = built[0]
        session = await orchestrator.start_session(["50"], request_id="req-9")
        await asyncio.wait_for(orchestrator.wait_until_idle(), timeout=2)
        return built, session

    (orchestrator, _, _, channel, _), session = asyncio.run(run())

    assert channel.responses == ["Looking for bus 50", "Bus 50 has arrived"]
    assert orchestrator.status == OrchestratorStatus.READY
    assert orchestrator.session is None
    assert not session.active
    stats = orchestrator.engine.get_stats()
    assert stats["matches"] == 1
    assert stats["failed"] == 0
    assert announcer.announcements == 0


def test_second_match_callback_is_rejected_while_first_announces():
    async def run():
        orchestrator, _, _, channel, announcer = _build(announcer=SlowAnnouncer())
        _bind(orchestrator)
        first = RecognitionJob(image=b"50", object_id=1)
        second = RecognitionJob(image=b"50", object_id=2)

        async def winner():
            return await orchestrator._handle_match("50", first, lambda: None)

        async def late():
            # Arrives while the winner is still inside announce()
            await asyncio.sleep(0.01)
            return await orchestrator._handle_match("50", second, lambda: None)

        results = await asyncio.gather(winner(), late())
        return results, orchestrator, channel, announcer

    results, orchestrator, channel, announcer = asyncio.run(run())

    assert results == [True, False]
    assert announcer.announced == ["50"]
    assert channel.responses == ["Bus 50 has arrived"]
    assert orchestrator.last_match == "50"
    assert orchestrator.session is None
