"""Tests del Telemetry Ingestor."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from common.clock import as_utc
from common.schema import sensor_readings
from relay_api.errors import UnknownDevice, ValidationError
from relay_api.ingest import TelemetryIngestor
from relay_api.ingest.telemetry import parse_timestamp


def _readings(db):
    return db.execute(select(sensor_readings).order_by(sensor_readings.c.id)).mappings().all()


class TestIngest:
    def test_known_field_stored_unknown_skipped(self, db, seeded):
        """{"soil_moisture_1": 42.0, "unknown_field": 1} → 1 guardada, 1 omitida."""
        result = TelemetryIngestor(db).ingest(
            seeded["device_id"],
            {"sensors": {"soil_moisture_1": 42.0, "unknown_field": 1}},
        )
        db.commit()

        assert result.stored_count == 1
        assert result.skipped == ["unknown_field"]

        rows = _readings(db)
        assert len(rows) == 1
        assert rows[0]["sensor_id"] == seeded["soil_moisture_1"]
        assert rows[0]["value"] == 42.0
        assert rows[0]["unit"] == "%"

    def test_values_stored_verbatim(self, db, seeded):
        """Sin redondeo ni chequeo de rango físico."""
        TelemetryIngestor(db).ingest(
            seeded["device_id"],
            {"sensors": {"soil_moisture_1": 123.456789, "water_volume": -5}},
        )
        db.commit()

        values = {r["sensor_id"]: r["value"] for r in _readings(db)}
        assert values[seeded["soil_moisture_1"]] == 123.456789
        assert values[seeded["water_volume"]] == -5

    def test_device_timestamp_wins_over_receive_time(self, db, seeded):
        received = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        TelemetryIngestor(db).ingest(
            seeded["device_id"],
            {"sensors": {"soil_moisture_2": 30}, "timestamp": "2026-03-01T11:59:30Z"},
            received_at=received,
        )
        db.commit()

        row = _readings(db)[0]
        assert as_utc(row["timestamp"]) == datetime(2026, 3, 1, 11, 59, 30, tzinfo=timezone.utc)
        assert as_utc(row["created_at"]) == received

    def test_all_unknown_stores_nothing(self, db, seeded):
        result = TelemetryIngestor(db).ingest(
            seeded["device_id"], {"sensors": {"foo": 1, "bar": 2}}
        )

        assert result.stored_count == 0
        assert sorted(result.skipped) == ["bar", "foo"]
        assert _readings(db) == []

    def test_unknown_device_stores_nothing(self, db, seeded):
        with pytest.raises(UnknownDevice):
            TelemetryIngestor(db).ingest("esp32-fantasma", {"sensors": {"soil_moisture_1": 1}})
        assert _readings(db) == []


class TestValidation:
    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"sensors": {}},
            {"sensors": []},
            {"sensors": {"soil_moisture_1": "42"}},
            {"sensors": {"soil_moisture_1": True}},
            {"sensors": {"soil_moisture_1": 1}, "timestamp": "ayer"},
        ],
    )
    def test_malformed_payload_rejected(self, db, seeded, payload):
        with pytest.raises(ValidationError):
            TelemetryIngestor(db).ingest(seeded["device_id"], payload)
        assert _readings(db) == []

    def test_empty_device_id_rejected(self, db, seeded):
        with pytest.raises(ValidationError):
            TelemetryIngestor(db).ingest("  ", {"sensors": {"soil_moisture_1": 1}})

    def test_parse_timestamp_naive_is_utc(self):
        parsed = parse_timestamp("2026-01-02T03:04:05")
        assert parsed == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert parse_timestamp(None) is None
