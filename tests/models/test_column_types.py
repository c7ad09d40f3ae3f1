"""
Tests for the portable column types and engine helpers.

Validates:
- UUIDs are stored as strings and loaded as UUID
- Timestamps are UTC-normalized on write and timezone-aware on load
- Naive datetimes are rejected before they reach the database
"""

from datetime import UTC, datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from sqlalchemy.dialects import postgresql, sqlite

from admissions_kernel.db import engine as db_engine_module
from admissions_kernel.db.base import UTCDateTime, UUIDString

EASTERN = timezone(timedelta(hours=-5))


class TestUUIDString:

    def test_round_trip(self):
        column = UUIDString()
        value = uuid4()
        stored = column.process_bind_param(value, sqlite.dialect())
        assert stored == str(value)
        assert column.process_result_value(stored, sqlite.dialect()) == value

    def test_none_passes_through(self):
        column = UUIDString()
        assert column.process_bind_param(None, sqlite.dialect()) is None
        assert column.process_result_value(None, sqlite.dialect()) is None


class TestUTCDateTime:

    def test_sqlite_stores_naive_utc(self):
        local = datetime(2024, 5, 1, 9, 0, tzinfo=EASTERN)
        stored = UTCDateTime().process_bind_param(local, sqlite.dialect())
        assert stored == datetime(2024, 5, 1, 14, 0)

    def test_postgres_keeps_awareness(self):
        local = datetime(2024, 5, 1, 9, 0, tzinfo=EASTERN)
        stored = UTCDateTime().process_bind_param(local, postgresql.dialect())
        assert stored == local
        assert stored.utcoffset() == timedelta(0)

    def test_naive_rejected(self):
        with pytest.raises(ValueError):
            UTCDateTime().process_bind_param(datetime(2024, 5, 1), sqlite.dialect())

    def test_load_attaches_utc(self):
        loaded = UTCDateTime().process_result_value(datetime(2024, 5, 1, 14, 0), sqlite.dialect())
        assert loaded.tzinfo is not None
        assert loaded == datetime(2024, 5, 1, 14, 0, tzinfo=UTC)


def test_persisted_state_is_timezone_aware(engine, sla_definition, deterministic_clock):
    app_id = uuid4()
    engine.initialize_application(app_id, "undergraduate")
    state = engine.get_state(app_id)
    assert isinstance(state.current_stage_id, UUID)
    assert state.entered_stage_at == deterministic_clock.now()
    assert state.entered_stage_at.utcoffset() == timedelta(0)


def test_uninitialized_engine_raises():
    db_engine_module.reset_engine()
    with pytest.raises(RuntimeError):
        db_engine_module.get_engine()
    with pytest.raises(RuntimeError):
        db_engine_module.get_session_factory()
    assert not db_engine_module.is_postgres()
