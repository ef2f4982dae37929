import numpy as np
import pytest

from services.detector.base_detector import InferenceEngine
from services.detector.detector import ObjectDetector
from services.errors import InferenceFailed, ModelLoadError, ModelNotReady


class FakeEngine(InferenceEngine):
    """Engine that tracks every tensor it hands out and every release."""

    def __init__(self, fail_compile=False, fail_run=False, num_outputs=2):
        self.fail_compile = fail_compile
        self.fail_run = fail_run
        self.num_outputs = num_outputs
        self.allocated = []
        self.released = []
        self.buffers = {}
        self.disposed = False

    def _alloc(self, name, data):
        self.allocated.append(name)
        self.buffers[name] = data
        return name

    def compile(self, model_path, accelerator="auto"):
        if self.fail_compile:
            raise RuntimeError("bad model")
        return {"path": model_path}

    def to_device(self, model, tensor):
        return self._alloc("input", tensor)

    def run(self, model, input_tensor):
        if self.fail_run:
            raise RuntimeError("delegate crashed")
        return [
            self._alloc(f"out{i}", np.full((6, 8400), i + 1, dtype=np.float32))
            for i in range(self.num_outputs)
        ]

    def to_host(self, output):
        # aliases engine memory
        return self.buffers[output]

    def release(self, tensor):
        self.released.append(tensor)
        # simulate the engine reusing the freed buffer
        self.buffers[tensor][...] = 0

    def dispose(self):
        self.disposed = True


def _tensor():
    return np.zeros((1, 3, 640, 640), dtype=np.float32)


def test_infer_before_initialize_raises():
    detector = ObjectDetector(FakeEngine(), "model.tflite")

    assert detector.get_status() == "not-initialized"
    with pytest.raises(ModelNotReady):
        detector.infer(_tensor())


def test_infer_releases_every_tensor_once():
    engine = FakeEngine()
    detector = ObjectDetector(engine, "model.tflite")
    detector.initialize()

    out = detector.infer(_tensor())

    assert detector.is_ready()
    assert detector.get_status() == "ready"
    assert sorted(engine.released) == sorted(engine.allocated)
    assert len(engine.released) == len(set(engine.released))
    # output was copied before its buffer was released
    assert out.shape == (6, 8400)
    assert np.all(out == 1)


def test_infer_failure_releases_input_and_wraps_error():
    engine = FakeEngine(fail_run=True)
    detector = ObjectDetector(engine, "model.tflite")
    detector.initialize()

    with pytest.raises(InferenceFailed):
        detector.infer(_tensor())

    assert engine.released == ["input"]


def test_infer_no_outputs_is_a_failure():
    engine = FakeEngine(num_outputs=0)
    detector = ObjectDetector(engine, "model.tflite")
    detector.initialize()

    with pytest.raises(InferenceFailed):
        detector.infer(_tensor())
    assert engine.released == ["input"]


def test_initialize_failure_reports_error():
    detector = ObjectDetector(FakeEngine(fail_compile=True), "missing.tflite")

    with pytest.raises(ModelLoadError):
        detector.initialize()

    assert not detector.is_ready()
    assert detector.get_status() == "error"
    assert "bad model" in detector.last_error


def test_dispose_resets_and_disposes_engine():
    engine = FakeEngine()
    detector = ObjectDetector(engine, "model.tflite")
    detector.initialize()
    detector.dispose()

    assert not detector.is_ready()
    assert engine.disposed
