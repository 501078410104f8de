from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from pathlib import Path

import pytest
from typer.testing import CliRunner

from fuelsync import main as cli
from fuelsync.adapters.vision_client import OcrExtraction, OcrNozzleReading

runner = CliRunner()
ENV = {"COLUMNS": "200", "LOG_LEVEL": "WARNING", "DATASTORE_BACKEND": "memory"}


@pytest.fixture(autouse=True)
def _keep_test_logging(monkeypatch):
    """dictConfig would bind handlers to the runner's short-lived streams."""
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)


@pytest.fixture
def shared_store(memory_store, monkeypatch):
    """Make every CLI command use the same in-memory datastore."""
    monkeypatch.setattr(cli, "create_datastore", lambda backend=None: memory_store)
    return memory_store


def _invoke(*args: str):
    return runner.invoke(cli.app, list(args), env=ENV)


def test_info_shows_backend_and_policies():
    result = _invoke("info")
    assert result.exit_code == 0
    assert "backend=memory" in result.output
    assert "price_scope=station_first" in result.output
    assert "memory backend starts empty for every command" in result.output


def test_write_against_per_process_memory_backend_explains_failure():
    result = _invoke("record-reading", "-s", "1", "-n", "1", "-v", "1000")
    assert result.exit_code == 1
    assert "Nozzle 1 not found" in result.output
    assert "Use it for tests and seeding only." in result.output


def test_add_price_and_list_prices(shared_store):
    result = _invoke("add-price", "--fuel-type", "petrol", "--price", "101.25", "--station-id", "1")
    assert result.exit_code == 0, result.output
    assert "PETROL 101.25" in result.output

    listing = _invoke("prices", "--station-id", "1")
    assert listing.exit_code == 0
    assert "101.25" in listing.output
    assert shared_store.table("prices")[0].price_per_litre == Decimal("101.25")


def test_add_price_rejects_non_positive(shared_store):
    result = _invoke("add-price", "--fuel-type", "PETROL", "--price", "0")
    assert result.exit_code == 1
    assert "Price per litre must be positive" in result.output
    assert shared_store.table("prices") == []


def test_record_reading_derives_sale(shared_store):
    _invoke("add-price", "-f", "PETROL", "-p", "100")
    first = _invoke("record-reading", "-s", "1", "-n", "1", "-v", "1000", "--date", "2024-04-30", "--time", "20:00")
    second = _invoke("record-reading", "-s", "1", "-n", "1", "-v", "1050.5", "--date", "2024-05-01", "--time", "20:00")

    assert first.exit_code == 0, first.output
    assert "no sale (baseline)" in first.output
    assert second.exit_code == 0, second.output
    assert "= 5050.00 (created)" in second.output
    assert shared_store.table("activity") == []


def test_record_reading_without_date_is_volume_entry(shared_store):
    result = _invoke("record-reading", "-s", "1", "-n", "1", "-v", "10", "--actor", "op-5")
    assert result.exit_code == 0, result.output
    (entry,) = shared_store.table("activity")
    assert entry.activity_type == "manual_volume_entry"
    assert entry.user_id == "op-5"


def test_record_reading_reports_validation_errors(shared_store):
    result = _invoke("record-reading", "-s", "2", "-n", "1", "-v", "10")
    assert result.exit_code == 1
    assert "belongs to station 1" in result.output


def test_record_reading_rejects_bad_date(shared_store):
    result = _invoke("record-reading", "-s", "1", "-n", "1", "-v", "10", "--date", "01/05/2024")
    assert result.exit_code != 0
    assert shared_store.table("readings") == []


def test_sales_listing_and_summary(shared_store, ingestor, add_price):
    add_price("100.00")
    ingestor.ingest(1, 1, "1000", reading_date=date(2024, 4, 30), reading_time=time(20, 0))
    ingestor.ingest(1, 1, "1050.5", reading_date=date(2024, 5, 1), reading_time=time(20, 0))

    listing = _invoke("sales", "--station-id", "1")
    summary = _invoke("sales", "--summary", "--nozzle-id", "1")
    empty = _invoke("sales", "--station-id", "2")

    assert listing.exit_code == 0
    assert "5,050.00" in listing.output
    assert summary.exit_code == 0
    assert "Sales Summary" in summary.output
    assert "PETROL volume (L)" in summary.output
    assert "No sales to display." in empty.output


def test_readings_listing(shared_store, ingestor):
    ingestor.ingest(1, 2, "777.125", reading_date=date(2024, 5, 1), reading_time=time(6, 30))
    result = _invoke("readings", "--station-id", "1")
    assert result.exit_code == 0
    assert "777.125" in result.output
    assert "06:30:00" in result.output


class _StubVision:
    def __init__(self, *args, **kwargs) -> None:
        pass

    def extract(self, content: bytes, content_type: str) -> OcrExtraction:
        return OcrExtraction(
            pump_sno="SN-100",
            nozzles=[
                OcrNozzleReading(nozzle_number=1, cumulative_volume=Decimal("10")),
                OcrNozzleReading(nozzle_number=9, cumulative_volume=Decimal("20")),
            ],
        )


def test_upload_photo_reports_partial_failures(shared_store, monkeypatch, tmp_path: Path):
    monkeypatch.setattr(cli, "VisionApiClient", _StubVision)
    photo = tmp_path / "meter.jpg"
    photo.write_bytes(b"\xff\xd8\xff")

    result = _invoke("upload-photo", str(photo), "--actor", "att-1")

    assert result.exit_code == 1
    assert "processed 1 of 2 nozzle readings" in result.output
    assert "Nozzle 9 not configured" in result.output
    assert len(shared_store.table("readings")) == 1


def test_upload_photo_rejects_unsupported_file(shared_store, monkeypatch, tmp_path: Path):
    monkeypatch.setattr(cli, "VisionApiClient", _StubVision)
    doc = tmp_path / "meter.txt"
    doc.write_text("not an image")

    result = _invoke("upload-photo", str(doc))

    assert result.exit_code == 1
    assert "Invalid file type" in result.output
