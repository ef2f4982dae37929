"""Core detector types and the abstract inference-engine interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import numpy as np


@dataclass(frozen=True)
class Detection:
    """One candidate plate region in a single frame.

    Attributes:
        bbox: (x, y, width, height) in frame pixel coordinates
        confidence: objectness * best class score, in [0, 1]
        class_id: index into the model's class list
        class_name: resolved label (e.g. "busnumber")
    """

    bbox: Tuple[float, float, float, float]
    confidence: float
    class_id: int
    class_name: str = ""

    @property
    def area(self) -> float:
        return self.bbox[2] * self.bbox[3]

    @property
    def center(self) -> Tuple[float, float]:
        x, y, w, h = self.bbox
        return x + w / 2.0, y + h / 2.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bbox": [round(float(v), 2) for v in self.bbox],
            "confidence": round(float(self.confidence), 4),
            "class_id": self.class_id,
            "class_name": self.class_name,
        }


class InferenceEngine(ABC):
    """Black-box model runtime.

    Implementations own model compilation and any engine-side tensor memory.
    The detector adapter drives the lifecycle: every tensor handed out by
    to_device() or returned by run() is passed to release() exactly once.
    """

    @abstractmethod
    def compile(self, model_path: str, accelerator: str = "auto") -> Any:
        """Load and compile a model, returning an opaque handle."""
        pass

    @abstractmethod
    def to_device(self, model: Any, tensor: np.ndarray) -> Any:
        """Move a host NCHW float32 tensor into engine-owned memory."""
        pass

    @abstractmethod
    def run(self, model: Any, input_tensor: Any) -> List[Any]:
        """Run the model on one input and return its output tensors."""
        pass

    @abstractmethod
    def to_host(self, output: Any) -> np.ndarray:
        """Read an output tensor. The result may alias engine memory."""
        pass

    @abstractmethod
    def release(self, tensor: Any) -> None:
        """Free an engine-owned tensor."""
        pass

    def dispose(self) -> None:
        """Drop compiled models and runtime state."""
        pass
