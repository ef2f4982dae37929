"""OCR collaborators: async HTTP client and the Google Vision backend."""

from services.ocr.ocr_client import OCRClient, OCRResponse, to_data_url

__all__ = ["OCRClient", "OCRResponse", "to_data_url"]
