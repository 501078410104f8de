"""
Entry adapters feeding readings into the ingestion pipeline (OCR photo upload,
manual reading form, manual volume entry) plus the vision service client.
"""

from fuelsync.adapters.manual import MANUAL_VOLUME_ACTIVITY, ManualReadingAdapter
from fuelsync.adapters.ocr import (
    NozzleIngestionResult,
    OcrIngestionResult,
    OcrReadingAdapter,
    OcrUpload,
)
from fuelsync.adapters.vision_client import (
    OcrExtraction,
    OcrNozzleReading,
    OcrService,
    VisionApiClient,
)

__all__ = [
    "MANUAL_VOLUME_ACTIVITY",
    "ManualReadingAdapter",
    "NozzleIngestionResult",
    "OcrExtraction",
    "OcrIngestionResult",
    "OcrNozzleReading",
    "OcrReadingAdapter",
    "OcrService",
    "OcrUpload",
    "VisionApiClient",
]
