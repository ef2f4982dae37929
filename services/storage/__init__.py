"""Image persistence."""

from services.storage.image_store import ImageStore, capture_filename

__all__ = ["ImageStore", "capture_filename"]
