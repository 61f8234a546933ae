"""Tests del Actuator State Reconciler."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from common.clock import as_utc
from common.schema import actuator_commands, actuator_logs, actuators
from relay_api.errors import ValidationError
from relay_api.ingest import ActuatorStateReconciler


T0 = datetime(2026, 5, 10, 6, 0, tzinfo=timezone.utc)


def _actuator(db, actuator_id):
    return db.execute(select(actuators).where(actuators.c.id == actuator_id)).mappings().one()


class TestReconcile:
    def test_reported_on_sets_active_and_last_activated(self, db, seeded):
        result = ActuatorStateReconciler(db).reconcile(
            seeded["device_id"], {"pump_1": True, "pump_2": False}, now=T0
        )
        db.commit()

        assert sorted(result.updated) == ["pump_1", "pump_2"]
        pump_1 = _actuator(db, seeded["pump_1"])
        pump_2 = _actuator(db, seeded["pump_2"])
        assert pump_1["status"] == "active"
        assert as_utc(pump_1["last_activated"]) == T0
        assert pump_2["status"] == "inactive"
        assert pump_2["last_activated"] is None

    def test_repeated_on_keeps_first_activation(self, db, seeded):
        reconciler = ActuatorStateReconciler(db)
        reconciler.reconcile(seeded["device_id"], {"pump_1": True}, now=T0)
        reconciler.reconcile(seeded["device_id"], {"pump_1": True}, now=T0 + timedelta(minutes=5))
        db.commit()

        assert as_utc(_actuator(db, seeded["pump_1"])["last_activated"]) == T0

    def test_off_then_on_moves_last_activated(self, db, seeded):
        reconciler = ActuatorStateReconciler(db)
        reconciler.reconcile(seeded["device_id"], {"pump_1": True}, now=T0)
        reconciler.reconcile(seeded["device_id"], {"pump_1_status": False}, now=T0 + timedelta(minutes=1))
        reconciler.reconcile(seeded["device_id"], {"pump_1": True}, now=T0 + timedelta(minutes=2))
        db.commit()

        assert as_utc(_actuator(db, seeded["pump_1"])["last_activated"]) == T0 + timedelta(minutes=2)

    def test_unknown_actuator_skipped(self, db, seeded):
        result = ActuatorStateReconciler(db).reconcile(
            seeded["device_id"], {"pump_7": True}, now=T0
        )
        assert result.updated == []
        assert result.skipped == ["pump_7"]

    def test_no_command_or_log_side_effects(self, db, seeded):
        ActuatorStateReconciler(db).reconcile(seeded["device_id"], {"pump_1": True}, now=T0)
        db.commit()

        assert db.execute(select(func.count()).select_from(actuator_logs)).scalar_one() == 0
        assert db.execute(select(func.count()).select_from(actuator_commands)).scalar_one() == 0

    def test_non_boolean_state_rejected(self, db, seeded):
        with pytest.raises(ValidationError):
            ActuatorStateReconciler(db).reconcile(seeded["device_id"], {"pump_1": 1}, now=T0)
