"""
OCR entry adapter: meter photo in, one reading (and maybe a sale) per nozzle out.

Each nozzle found on the photo is ingested in its own transaction. A failing
nozzle is recorded in the result and never aborts the others.
"""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from fuelsync.config import Settings, get_settings
from fuelsync.domain.errors import FuelSyncError, ValidationError
from fuelsync.domain.models import Derivation, NozzleContext, Pump, ReadingSource
from fuelsync.adapters.vision_client import OcrExtraction, OcrService
from fuelsync.pipeline.ingestion import ReadingIngestor
from fuelsync.utils.logging import get_logger

log = get_logger(__name__)


class OcrUpload(BaseModel):
    content: bytes
    content_type: str
    filename: Optional[str] = None
    pump_sno: Optional[str] = None
    station_id: Optional[int] = None
    user_id: Optional[str] = None

    model_config = {"frozen": True}


class NozzleIngestionResult(BaseModel):
    nozzle_number: int
    cumulative_volume: Decimal
    nozzle_id: Optional[int] = None
    derivation: Optional[Derivation] = None
    error: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.error is None


class OcrIngestionResult(BaseModel):
    pump_id: int
    pump_sno: str
    station_id: int
    extraction: OcrExtraction
    results: List[NozzleIngestionResult] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def processed(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def sales_created(self) -> int:
        return sum(1 for r in self.results if r.derivation is not None and r.derivation.sale_created)

    @property
    def errors(self) -> List[str]:
        return [f"nozzle {r.nozzle_number}: {r.error}" for r in self.results if r.error]

    @property
    def summary(self) -> str:
        return f"processed {self.processed} of {self.total} nozzle readings"


class OcrReadingAdapter:
    """Translate an uploaded meter photo into reading ingestions."""

    def __init__(
        self,
        ingestor: ReadingIngestor,
        ocr_service: OcrService,
        settings: Optional[Settings] = None,
    ) -> None:
        self.ingestor = ingestor
        self.ocr_service = ocr_service
        self.settings = settings or get_settings()

    def validate_upload(self, upload: OcrUpload) -> None:
        if not upload.content:
            raise ValidationError("No file provided")
        if len(upload.content) > self.settings.ocr_max_upload_bytes:
            limit_mb = self.settings.ocr_max_upload_bytes / (1024 * 1024)
            raise ValidationError(f"File size too large. Maximum size is {limit_mb:g}MB.")
        content_type = upload.content_type.split(";")[0].strip().lower()
        if content_type not in self.settings.ocr_allowed_content_types:
            raise ValidationError(
                f"Invalid file type '{upload.content_type}'. "
                f"Allowed: {', '.join(self.settings.ocr_allowed_content_types)}"
            )

    def _resolve_pump(
        self, pump_sno: str, station_id: Optional[int]
    ) -> Tuple[Pump, List[NozzleContext]]:
        with self.ingestor.datastore.transaction() as session:
            pumps = session.find_pumps(pump_sno, station_id=station_id)
            if not pumps:
                scope = f" at station {station_id}" if station_id is not None else ""
                raise ValidationError(f"Pump '{pump_sno}' not found{scope}")
            if len(pumps) > 1:
                raise ValidationError(
                    f"Pump serial '{pump_sno}' matches {len(pumps)} stations; station id required"
                )
            pump = pumps[0]
            return pump, session.list_pump_nozzles(pump.id)

    def process_upload(self, upload: OcrUpload) -> OcrIngestionResult:
        """
        Validate the upload, extract readings and ingest each nozzle.

        Raises
        ------
        ValidationError
            Bad upload, missing or unknown pump serial.
        OcrServiceError
            The vision service failed; nothing was ingested.
        """
        self.validate_upload(upload)
        log.info(
            "[OCR UPLOAD]",
            extra={
                "upload_name": upload.filename,
                "bytes": len(upload.content),
                "pump_sno": upload.pump_sno,
            },
        )
        extraction = self.ocr_service.extract(upload.content, upload.content_type)

        pump_sno = (upload.pump_sno or extraction.pump_sno or "").strip()
        if not pump_sno:
            raise ValidationError("Pump serial number is required")
        if upload.pump_sno and extraction.pump_sno and extraction.pump_sno.strip() != pump_sno:
            log.warning(
                "Pump serial on photo differs from the submitted one; using the submitted serial",
                extra={"submitted": pump_sno, "extracted": extraction.pump_sno},
            )

        pump, nozzles = self._resolve_pump(pump_sno, upload.station_id)
        by_number = {n.nozzle_number: n for n in nozzles}

        now = self.ingestor.clock()
        reading_date: date = extraction.reading_date or now.date()
        reading_time: time = extraction.reading_time or now.time().replace(microsecond=0)

        results: List[NozzleIngestionResult] = []
        for item in extraction.nozzles:
            results.append(
                self._ingest_nozzle(pump, by_number.get(item.nozzle_number), item.nozzle_number,
                                    item.cumulative_volume, reading_date, reading_time, upload.user_id)
            )

        outcome = OcrIngestionResult(
            pump_id=pump.id,
            pump_sno=pump.pump_sno,
            station_id=pump.station_id,
            extraction=extraction,
            results=results,
        )
        log_method = log.info if outcome.processed == outcome.total else log.warning
        log_method(
            f"[OCR COMPLETE] {outcome.summary}",
            extra={
                "pump_id": pump.id,
                "processed": outcome.processed,
                "total": outcome.total,
                "sales_created": outcome.sales_created,
            },
        )
        return outcome

    def _ingest_nozzle(
        self,
        pump: Pump,
        nozzle: Optional[NozzleContext],
        nozzle_number: int,
        cumulative_volume: Decimal,
        reading_date: date,
        reading_time: time,
        user_id: Optional[str],
    ) -> NozzleIngestionResult:
        if nozzle is None:
            log.warning(
                "Nozzle on photo is not configured for the pump",
                extra={"pump_id": pump.id, "nozzle_number": nozzle_number},
            )
            return NozzleIngestionResult(
                nozzle_number=nozzle_number,
                cumulative_volume=cumulative_volume,
                error=f"Nozzle {nozzle_number} not configured on pump {pump.pump_sno}",
            )

        try:
            derivation = self.ingestor.ingest(
                station_id=pump.station_id,
                nozzle_id=nozzle.nozzle_id,
                cumulative_volume=cumulative_volume,
                reading_date=reading_date,
                reading_time=reading_time,
                source=ReadingSource.OCR,
                created_by=user_id,
            )
        except FuelSyncError as exc:
            log.warning(
                f"[NOZZLE REJECTED] {exc}",
                extra={"nozzle_id": nozzle.nozzle_id, "nozzle_number": nozzle_number},
            )
            error = str(exc)
        except Exception as exc:  # noqa: BLE001 - one nozzle must not abort the others
            log.exception(
                "[NOZZLE FAILED]",
                extra={"nozzle_id": nozzle.nozzle_id, "nozzle_number": nozzle_number},
            )
            error = str(exc) or exc.__class__.__name__
        else:
            return NozzleIngestionResult(
                nozzle_number=nozzle_number,
                cumulative_volume=cumulative_volume,
                nozzle_id=nozzle.nozzle_id,
                derivation=derivation,
            )
        return NozzleIngestionResult(
            nozzle_number=nozzle_number,
            cumulative_volume=cumulative_volume,
            nozzle_id=nozzle.nozzle_id,
            error=error,
        )


__all__ = ["NozzleIngestionResult", "OcrIngestionResult", "OcrReadingAdapter", "OcrUpload"]
