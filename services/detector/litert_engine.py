"""LiteRT (TFLite) inference engine.

Runs the exported YOLO .tflite detector on CPU (XNNPack) or, when a GPU
delegate library is configured, on the GPU delegate. The pipeline always
hands over NCHW tensors; they are transposed to NHWC when the compiled
model's input expects channels-last.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np

from services.detector.base_detector import InferenceEngine
from services.errors import ModelLoadError

logger = logging.getLogger(__name__)

# Try the current LiteRT wheel first, then the legacy tflite-runtime wheel
LITERT_AVAILABLE = False
Interpreter = None
load_delegate = None
try:
    from ai_edge_litert.interpreter import Interpreter, load_delegate

    LITERT_AVAILABLE = True
except ImportError:
    try:
        from tflite_runtime.interpreter import Interpreter, load_delegate

        LITERT_AVAILABLE = True
    except ImportError:
        logger.warning(
            "ai-edge-litert not installed. Install with: pip install ai-edge-litert"
        )


@dataclass
class CompiledModel:
    """Handle returned by LiteRTEngine.compile()."""

    interpreter: Any
    model_path: str
    accelerator: str
    input_index: int
    input_shape: tuple
    output_indices: List[int]
    channels_last: bool
    load_time_ms: float


class LiteRTEngine(InferenceEngine):
    """LiteRT interpreter wrapper with a per-path model cache."""

    def __init__(self, num_threads: int = 4, gpu_delegate: Optional[str] = None):
        """
        Args:
            num_threads: CPU interpreter threads
            gpu_delegate: path to a GPU delegate shared library
                          (defaults to env LITERT_GPU_DELEGATE)
        """
        self.num_threads = num_threads
        self.gpu_delegate = gpu_delegate or os.getenv("LITERT_GPU_DELEGATE")
        self._cache: Dict[str, CompiledModel] = {}

    def compile(self, model_path: str, accelerator: str = "auto") -> CompiledModel:
        cached = self._cache.get(model_path)
        if cached is not None:
            logger.info(f"Using cached model {model_path} ({cached.accelerator})")
            return cached

        if not LITERT_AVAILABLE:
            raise ModelLoadError(
                "ai-edge-litert not installed. Install with: pip install ai-edge-litert"
            )
        if not os.path.exists(model_path):
            raise ModelLoadError(f"Model file not found: {model_path}")

        t0 = time.time()
        interpreter, used = self._create_interpreter(model_path, accelerator)
        try:
            interpreter.allocate_tensors()
        except Exception as e:
            raise ModelLoadError(f"Model loading failed: {e}") from e

        input_detail = interpreter.get_input_details()[0]
        input_shape = tuple(int(d) for d in input_detail["shape"])
        # [1, S, S, 3] -> channels-last, [1, 3, S, S] -> channels-first
        channels_last = len(input_shape) == 4 and input_shape[-1] == 3

        model = CompiledModel(
            interpreter=interpreter,
            model_path=model_path,
            accelerator=used,
            input_index=input_detail["index"],
            input_shape=input_shape,
            output_indices=[d["index"] for d in interpreter.get_output_details()],
            channels_last=channels_last,
            load_time_ms=(time.time() - t0) * 1000,
        )
        self._cache[model_path] = model

        logger.info(
            f"Model loaded in {model.load_time_ms:.0f}ms using {used} "
            f"(input={input_shape}, outputs={len(model.output_indices)})"
        )
        return model

    def _create_interpreter(self, model_path: str, accelerator: str):
        if accelerator == "gpu":
            if self.gpu_delegate:
                try:
                    delegate = load_delegate(self.gpu_delegate)
                    return (
                        Interpreter(model_path=model_path, experimental_delegates=[delegate]),
                        "gpu",
                    )
                except Exception as e:
                    logger.warning(f"GPU delegate unavailable, using CPU: {e}")
            else:
                logger.warning("GPU requested but LITERT_GPU_DELEGATE not set, using CPU")

        try:
            return (
                Interpreter(model_path=model_path, num_threads=self.num_threads),
                "cpu",
            )
        except Exception as e:
            raise ModelLoadError(f"Model loading failed: {e}") from e

    def to_device(self, model: CompiledModel, tensor: np.ndarray) -> np.ndarray:
        data = tensor.astype(np.float32, copy=False)
        if model.channels_last and data.ndim == 4 and data.shape[1] == 3:
            data = data.transpose(0, 2, 3, 1)
        return np.ascontiguousarray(data)

    def run(self, model: CompiledModel, input_tensor: np.ndarray) -> List[np.ndarray]:
        interpreter = model.interpreter
        interpreter.set_tensor(model.input_index, input_tensor)
        interpreter.invoke()
        # get_tensor() already returns a copy of the interpreter buffer
        return [interpreter.get_tensor(idx) for idx in model.output_indices]

    def to_host(self, output: np.ndarray) -> np.ndarray:
        return output

    def release(self, tensor: Any) -> None:
        # Host-side numpy buffers; nothing engine-owned to free
        pass

    def dispose(self) -> None:
        self._cache.clear()
