"""OCR text normalization and whitelist matching."""

from services.matching.validator import (
    NO_MATCH,
    edit_distance,
    normalize_text,
    validate,
)

__all__ = ["NO_MATCH", "edit_distance", "normalize_text", "validate"]
