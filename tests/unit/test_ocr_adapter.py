from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import List

import pytest

from fuelsync.adapters.ocr import OcrReadingAdapter, OcrUpload
from fuelsync.adapters.vision_client import OcrExtraction, OcrNozzleReading
from fuelsync.config import Settings
from fuelsync.domain.errors import OcrServiceError, ValidationError
from fuelsync.domain.models import ReadingSource, SaleOutcome
from fuelsync.pipeline.ingestion import ReadingIngestor

PHOTO = b"\xff\xd8\xff-meter-photo"


class _FakeOcr:
    def __init__(self, extraction: OcrExtraction | None = None, error: Exception | None = None) -> None:
        self.extraction = extraction
        self.error = error
        self.calls: List[tuple] = []

    def extract(self, content: bytes, content_type: str) -> OcrExtraction:
        self.calls.append((content, content_type))
        if self.error is not None:
            raise self.error
        return self.extraction


class _FlakyIngestor(ReadingIngestor):
    """Fails with an unexpected error for one nozzle id."""

    def __init__(self, *args, broken_nozzle_id: int, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.broken_nozzle_id = broken_nozzle_id

    def ingest(self, station_id, nozzle_id, *args, **kwargs):
        if nozzle_id == self.broken_nozzle_id:
            raise RuntimeError("connection reset")
        return super().ingest(station_id, nozzle_id, *args, **kwargs)


def _extraction(*pairs, pump_sno="SN-100", reading_date=date(2024, 5, 1), reading_time=time(8, 0)):
    return OcrExtraction(
        pump_sno=pump_sno,
        reading_date=reading_date,
        reading_time=reading_time,
        nozzles=[OcrNozzleReading(nozzle_number=n, cumulative_volume=Decimal(v)) for n, v in pairs],
    )


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def _upload(**overrides) -> OcrUpload:
    data = {"content": PHOTO, "content_type": "image/jpeg", "filename": "meter.jpg", "user_id": "att-9"}
    data.update(overrides)
    return OcrUpload(**data)


@pytest.fixture
def baseline(ingestor, add_price):
    add_price("100.00")
    add_price("90.00", fuel_type="DIESEL")
    ingestor.ingest(1, 1, "1000", reading_date=date(2024, 4, 30), reading_time=time(8, 0))
    ingestor.ingest(1, 2, "500", reading_date=date(2024, 4, 30), reading_time=time(8, 0))


def test_every_nozzle_ingested_with_sales(ingestor, baseline, memory_store):
    ocr = _FakeOcr(_extraction((1, "1050.5"), (2, "520")))
    adapter = OcrReadingAdapter(ingestor, ocr, settings=_settings())

    result = adapter.process_upload(_upload())

    assert result.summary == "processed 2 of 2 nozzle readings"
    assert result.errors == []
    assert result.sales_created == 2
    assert result.pump_id == 1
    assert result.station_id == 1
    totals = [r.derivation.sale.total_amount for r in result.results]
    assert totals == [Decimal("5050.00"), Decimal("1800.00")]
    latest = [r for r in memory_store.table("readings") if r.reading_date == date(2024, 5, 1)]
    assert {r.source for r in latest} == {ReadingSource.OCR}
    assert {r.created_by for r in latest} == {"att-9"}
    assert ocr.calls == [(PHOTO, "image/jpeg")]


def test_unconfigured_nozzle_is_reported_not_raised(ingestor, baseline):
    ocr = _FakeOcr(_extraction((1, "1010"), (3, "77")))

    result = OcrReadingAdapter(ingestor, ocr, settings=_settings()).process_upload(_upload())

    assert result.processed == 1
    assert result.total == 2
    assert result.summary == "processed 1 of 2 nozzle readings"
    assert result.errors == ["nozzle 3: Nozzle 3 not configured on pump SN-100"]
    assert result.results[0].derivation.outcome is SaleOutcome.CREATED


def test_rejected_nozzle_does_not_abort_others(memory_store, baseline, clock):
    ingestor = ReadingIngestor(memory_store, negative_delta_policy="reject", clock=clock)
    ocr = _FakeOcr(_extraction((1, "900"), (2, "530")))

    result = OcrReadingAdapter(ingestor, ocr, settings=_settings()).process_upload(_upload())

    assert result.processed == 1
    assert "below the previous reading" in result.errors[0]
    assert result.results[1].derivation.sale.delta_volume_l == Decimal("30.000")
    nozzle_1 = [r for r in memory_store.table("readings") if r.nozzle_id == 1]
    assert len(nozzle_1) == 1


def test_unexpected_error_is_collected(memory_store, baseline, clock):
    ingestor = _FlakyIngestor(memory_store, clock=clock, broken_nozzle_id=1)
    ocr = _FakeOcr(_extraction((1, "1010"), (2, "510")))

    result = OcrReadingAdapter(ingestor, ocr, settings=_settings()).process_upload(_upload())

    assert result.errors == ["nozzle 1: connection reset"]
    assert result.results[1].ok


def test_missing_date_and_time_default_to_clock(ingestor, clock):
    ocr = _FakeOcr(_extraction((1, "10"), reading_date=None, reading_time=None))

    result = OcrReadingAdapter(ingestor, ocr, settings=_settings()).process_upload(_upload())

    reading = result.results[0].derivation.reading
    assert reading.reading_date == clock().date()
    assert reading.reading_time == time(12, 0)
    assert result.results[0].derivation.outcome is SaleOutcome.BASELINE


def test_submitted_pump_serial_wins_over_extracted(ingestor):
    ocr = _FakeOcr(_extraction((1, "10"), pump_sno="SN-999"))
    result = OcrReadingAdapter(ingestor, ocr, settings=_settings()).process_upload(
        _upload(pump_sno="SN-100")
    )
    assert result.pump_sno == "SN-100"


@pytest.mark.parametrize(
    "upload, message",
    [
        (_upload(content=b""), "No file provided"),
        (_upload(content=b"x" * 65), "File size too large"),
        (_upload(content_type="image/gif"), "Invalid file type"),
    ],
)
def test_upload_validation(ingestor, upload, message):
    ocr = _FakeOcr(_extraction((1, "10")))
    adapter = OcrReadingAdapter(ingestor, ocr, settings=_settings(ocr_max_upload_bytes=64))

    with pytest.raises(ValidationError, match=message):
        adapter.process_upload(upload)

    assert ocr.calls == []


def test_content_type_parameters_are_ignored(ingestor):
    adapter = OcrReadingAdapter(ingestor, _FakeOcr(), settings=_settings())
    adapter.validate_upload(_upload(content_type="Application/PDF; charset=binary"))


def test_pump_serial_required(ingestor, memory_store):
    ocr = _FakeOcr(_extraction((1, "10"), pump_sno=None))
    with pytest.raises(ValidationError, match="Pump serial number is required"):
        OcrReadingAdapter(ingestor, ocr, settings=_settings()).process_upload(_upload())
    assert memory_store.table("readings") == []


def test_unknown_pump_serial(ingestor):
    ocr = _FakeOcr(_extraction((1, "10"), pump_sno="SN-404"))
    with pytest.raises(ValidationError, match="Pump 'SN-404' not found"):
        OcrReadingAdapter(ingestor, ocr, settings=_settings()).process_upload(_upload())


def test_ambiguous_pump_serial_needs_station(ingestor, memory_store):
    memory_store.add_pump(2, "SN-100")
    ocr = _FakeOcr(_extraction((1, "10")))
    adapter = OcrReadingAdapter(ingestor, ocr, settings=_settings())

    with pytest.raises(ValidationError, match="matches 2 stations"):
        adapter.process_upload(_upload())

    result = adapter.process_upload(_upload(station_id=1))
    assert result.station_id == 1


def test_ocr_failure_ingests_nothing(ingestor, memory_store):
    ocr = _FakeOcr(error=OcrServiceError("Vision operation failed: timeout"))
    with pytest.raises(OcrServiceError):
        OcrReadingAdapter(ingestor, ocr, settings=_settings()).process_upload(_upload())
    assert memory_store.table("readings") == []
