import asyncio

import numpy as np
import pytest

from services.bus_finder import BusFinder
from services.camera.video_source import VideoSource, parse_source
from services.detector.base_detector import InferenceEngine
from services.detector.detector_factory import create_detector, get_detector_info
from services.errors import ModelLoadError
from services.pipeline.orchestrator import OrchestratorStatus, PipelineOrchestrator
from services.recognition.engine import ParallelRecognitionEngine


class FakeEngine(InferenceEngine):
    def __init__(self, fail_compile=False):
        self.fail_compile = fail_compile
        self.disposed = False

    def compile(self, model_path, accelerator="auto"):
        if self.fail_compile:
            raise RuntimeError("bad model")
        return object()

    def to_device(self, model, tensor):
        return tensor

    def run(self, model, input_tensor):
        return [np.zeros((6, 8400), dtype=np.float32)]

    def to_host(self, output):
        return output

    def release(self, tensor):
        pass

    def dispose(self):
        self.disposed = True


class FakeOCRClient:
    def __init__(self):
        self.warmed = False
        self.disposed = False

    async def recognize(self, image):
        raise AssertionError("no OCR expected")

    async def warmup(self):
        self.warmed = True
        return True

    def is_ready(self):
        return self.warmed

    async def dispose(self):
        self.disposed = True


class FakeCapture:
    def __init__(self, frames):
        self.frames = list(frames)
        self.rewinds = 0
        self.released = False

    def isOpened(self):
        return not self.released

    def read(self):
        if self.frames:
            return True, self.frames.pop(0)
        return False, None

    def set(self, prop, value):
        self.rewinds += 1

    def release(self):
        self.released = True


class StaticFrames:
    def __init__(self):
        self.opened = False
        self.released = False

    def open(self):
        self.opened = True
        return True

    def get_frame(self):
        return np.zeros((480, 640, 3), dtype=np.uint8)

    def release(self):
        self.released = True


def _bus_finder(engine):
    detector = create_detector(engine=engine, model_path="bus.tflite", accelerator="cpu")
    ocr = FakeOCRClient()
    recognition = ParallelRecognitionEngine(ocr, max_concurrent=2)
    frames = StaticFrames()
    orchestrator = PipelineOrchestrator(detector, recognition, frames)
    return BusFinder(detector, ocr, recognition, orchestrator, frame_source=frames), ocr, frames


def test_initialize_and_dispose():
    async def run():
        bus_finder, ocr, frames = _bus_finder(FakeEngine())
        ready = await bus_finder.initialize()
        status = bus_finder.orchestrator.status
        await bus_finder.dispose()
        return bus_finder, ready, status, ocr, frames

    bus_finder, ready, status, ocr, frames = asyncio.run(run())

    assert ready
    assert status == OrchestratorStatus.READY
    assert ocr.warmed and ocr.disposed
    assert frames.opened and frames.released
    assert not bus_finder.detector.is_ready()


def test_model_load_failure_leaves_pipeline_not_ready():
    async def run():
        bus_finder, _, _ = _bus_finder(FakeEngine(fail_compile=True))
        ready = await bus_finder.initialize()
        return bus_finder, ready

    bus_finder, ready = asyncio.run(run())

    assert not ready
    assert bus_finder.orchestrator.status == OrchestratorStatus.NOT_READY
    info = get_detector_info(bus_finder.detector)
    assert info["engine"] == "FakeEngine"
    assert info["status"] == "error"
    assert "bad model" in info["error"]


def test_detector_initialize_is_idempotent():
    detector = create_detector(engine=FakeEngine(), model_path="bus.tflite")
    detector.initialize()
    detector.initialize()
    assert detector.is_ready()


def test_model_load_error_type():
    detector = create_detector(engine=FakeEngine(fail_compile=True), model_path="bus.tflite")
    with pytest.raises(ModelLoadError):
        detector.initialize()


def test_parse_source():
    assert parse_source("0") == 0
    assert parse_source(2) == 2
    assert parse_source("rtsp://cam/stream") == "rtsp://cam/stream"
    assert VideoSource("rtsp://cam/stream").is_stream
    assert not VideoSource("clip.mp4").is_stream


def test_file_source_rewinds_on_eof():
    frame = np.ones((10, 10, 3), dtype=np.uint8)
    source = VideoSource("clip.mp4")
    cap = FakeCapture([frame])
    source.cap = cap

    assert source.get_frame() is frame
    # EOF: rewind is attempted, the fake has nothing left to give
    assert source.get_frame() is None
    assert cap.rewinds == 1
    assert source.frames_read == 1


def test_stream_reconnects_after_repeated_failures():
    source = VideoSource("rtsp://cam/stream", max_failures=2, reconnect_delay_s=0.0)
    source._create_capture = lambda: FakeCapture([])
    source.cap = FakeCapture([])

    assert source.get_frame() is None
    assert source.reconnects == 0
    assert source.get_frame() is None
    assert source.reconnects == 1
