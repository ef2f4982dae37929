"""Object detector adapter: model lifecycle and tensor-safe inference.

ObjectDetector owns one compiled model on an InferenceEngine. Its only job
beyond delegating is lifecycle safety:
- the input tensor is released exactly once, on success and on failure
- the first output is copied out of engine memory before any output is released
- every engine error surfaces as InferenceFailed
"""

import logging
import time
from typing import Any, Optional

import numpy as np

from services.detector.base_detector import InferenceEngine
from services.errors import InferenceFailed, ModelLoadError, ModelNotReady

logger = logging.getLogger(__name__)


class ObjectDetector:
    """Wraps an inference engine with initialize/ready/dispose semantics."""

    def __init__(
        self,
        engine: InferenceEngine,
        model_path: str,
        accelerator: str = "auto",
    ):
        self.engine = engine
        self.model_path = model_path
        self.accelerator = accelerator

        self._model: Any = None
        self._loading = False
        self._error: Optional[str] = None
        self.load_time_ms = 0.0

    def initialize(self) -> None:
        """Compile the model. Safe to call more than once.

        Raises:
            ModelLoadError: if compilation fails (the detector stays not ready)
        """
        if self._model is not None:
            logger.info("Detector already initialized")
            return

        self._loading = True
        self._error = None
        t0 = time.time()
        try:
            logger.info(f"Loading model: {self.model_path} ({self.accelerator})")
            self._model = self.engine.compile(self.model_path, self.accelerator)
            self.load_time_ms = (time.time() - t0) * 1000
            logger.info(f"✅ Model loaded successfully in {self.load_time_ms:.0f}ms")
        except Exception as e:
            self._error = str(e)
            logger.error(f"Model initialization failed: {e}")
            if isinstance(e, ModelLoadError):
                raise
            raise ModelLoadError(f"Model initialization failed: {e}") from e
        finally:
            self._loading = False

    def is_ready(self) -> bool:
        return self._model is not None

    def get_status(self) -> str:
        """Return 'ready', 'loading', 'error' or 'not-initialized'."""
        if self._model is not None:
            return "ready"
        if self._loading:
            return "loading"
        if self._error:
            return "error"
        return "not-initialized"

    @property
    def last_error(self) -> Optional[str]:
        return self._error

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        """Run the model on a preprocessed tensor.

        Args:
            tensor: (1, 3, S, S) float32 input

        Returns:
            Copy of the first output tensor (original shape preserved)

        Raises:
            ModelNotReady: if initialize() has not succeeded
            InferenceFailed: on any engine error
        """
        if self._model is None:
            raise ModelNotReady("Model not initialized. Call initialize() first.")

        try:
            input_tensor = self.engine.to_device(self._model, tensor)
        except Exception as e:
            raise InferenceFailed(f"Inference failed: {e}") from e

        released = False
        try:
            outputs = self.engine.run(self._model, input_tensor)

            # Input no longer needed once the run returns
            released = True
            self.engine.release(input_tensor)

            outputs = list(outputs) if isinstance(outputs, (list, tuple)) else [outputs]
            if not outputs:
                raise InferenceFailed("Model returned no outputs")

            try:
                data = np.array(self.engine.to_host(outputs[0]), dtype=np.float32, copy=True)
            finally:
                for out in outputs:
                    self.engine.release(out)

            return data

        except InferenceFailed:
            raise
        except Exception as e:
            raise InferenceFailed(f"Inference failed: {e}") from e
        finally:
            if not released:
                try:
                    self.engine.release(input_tensor)
                except Exception as e:
                    logger.debug(f"Input tensor release failed: {e}")

    def dispose(self) -> None:
        self._model = None
        self._error = None
        self.engine.dispose()
        logger.info("Detector disposed")
