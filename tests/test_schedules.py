"""Tests del runner de riego programado."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import insert, select

from common.clock import as_utc
from common.db import session_factory
from common.schema import actuator_commands, irrigation_schedules
from jobs.schedules import next_run_after, run_once


NOW = datetime(2026, 8, 15, 6, 0, tzinfo=timezone.utc)


def _add_schedule(engine, actuator_id, next_run, frequency_days=1, duration=20, active=True):
    with engine.begin() as conn:
        result = conn.execute(
            insert(irrigation_schedules).values(
                actuator_id=actuator_id,
                zone_name="Tomates",
                duration_minutes=duration,
                frequency_days=frequency_days,
                is_active=active,
                next_run=next_run,
            )
        )
        return int(result.inserted_primary_key[0])


def _schedule(engine, schedule_id):
    with engine.connect() as conn:
        return conn.execute(
            select(irrigation_schedules).where(irrigation_schedules.c.id == schedule_id)
        ).mappings().one()


def _commands(engine):
    with engine.connect() as conn:
        return conn.execute(select(actuator_commands)).mappings().all()


class TestNextRunAfter:
    def test_single_step(self):
        prev = NOW - timedelta(hours=1)
        assert next_run_after(prev, 2, NOW) == prev + timedelta(days=2)

    def test_skips_missed_runs(self):
        prev = NOW - timedelta(days=5, hours=1)
        upcoming = next_run_after(prev, 1, NOW)
        assert upcoming > NOW
        assert upcoming - NOW < timedelta(days=1)


class TestRunOnce:
    def test_due_schedule_enqueues_scheduled_start(self, engine, seeded):
        due_at = NOW - timedelta(minutes=10)
        schedule_id = _add_schedule(engine, seeded["pump_1"], due_at, frequency_days=2, duration=20)

        assert run_once(session_factory(), NOW) == 1

        commands = _commands(engine)
        assert len(commands) == 1
        assert commands[0]["actuator_id"] == seeded["pump_1"]
        assert commands[0]["action"] == "start"
        assert commands[0]["duration_minutes"] == 20
        assert commands[0]["triggered_by"] == "scheduled"
        assert commands[0]["state"] == "pending"

        row = _schedule(engine, schedule_id)
        assert as_utc(row["last_run"]) == NOW
        assert as_utc(row["next_run"]) == due_at + timedelta(days=2)

        # Ya no está vencido
        assert run_once(session_factory(), NOW) == 0

    def test_missed_runs_fire_once(self, engine, seeded):
        _add_schedule(engine, seeded["pump_2"], NOW - timedelta(days=4), frequency_days=1)

        assert run_once(session_factory(), NOW) == 1
        assert len(_commands(engine)) == 1

    def test_future_and_inactive_ignored(self, engine, seeded):
        _add_schedule(engine, seeded["pump_1"], NOW + timedelta(hours=3))
        _add_schedule(engine, seeded["pump_2"], NOW - timedelta(hours=3), active=False)

        assert run_once(session_factory(), NOW) == 0
        assert _commands(engine) == []

    def test_schedule_supersedes_pending_manual(self, engine, seeded, db):
        from relay_api.commands import CommandQueue

        manual = CommandQueue(db).enqueue(seeded["pump_1"], "stop", now=NOW - timedelta(hours=1))
        db.commit()
        _add_schedule(engine, seeded["pump_1"], NOW - timedelta(minutes=1))

        assert run_once(session_factory(), NOW) == 1

        states = {c["id"]: c["state"] for c in _commands(engine)}
        assert states[manual.command.id] == "superseded"
        assert sorted(states.values()) == ["pending", "superseded"]
