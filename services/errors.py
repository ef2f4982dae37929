"""Error taxonomy shared by the detection and recognition services.

Transient errors (OCR request, single inference) are caught at the job or
frame boundary. Setup errors (model load, rendering) mark the orchestrator
as not ready. Cancellation is not an error and has no class here.
"""


class BusFinderError(Exception):
    """Base class for pipeline errors."""


class RenderingUnavailable(BusFinderError):
    """No usable frame/drawing surface to build the model input from."""


class InferenceFailed(BusFinderError):
    """The inference engine raised while running a frame."""


class ModelLoadError(BusFinderError):
    """Model could not be loaded or compiled."""


class ModelNotReady(BusFinderError):
    """Inference requested before the model finished loading."""


class OCRRequestError(BusFinderError):
    """OCR endpoint unreachable or returned a non-success status."""


class TTSError(BusFinderError):
    """Speech synthesis failed or returned no audio."""
