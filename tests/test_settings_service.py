"""
tests/test_settings_service.py — SettingsStore Tests
=====================================================

Typed validation, write-through with immediate invalidation, TTL-bounded
staleness for other readers, and the admin audit trail.
"""

from __future__ import annotations

import json
import threading

import pytest
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gembot.database.models import AdminLog, GemsSetting
from gembot.database.seed import DEFAULT_SETTINGS, seed_default_settings
from gembot.engine.cache import SettingsCache
from gembot.errors import InvalidInput
from gembot.services.settings_service import (
    SettingsStore,
    parse_setting_input,
    validate_setting_value,
)


def _write_behind_cache(engine, key: str, value) -> None:
    """Change a row directly, the way another process would."""
    with Session(engine) as s:
        s.execute(
            update(GemsSetting).where(GemsSetting.key == key).values(value_json=json.dumps(value))
        )
        s.commit()


class TestSeed:
    def test_defaults_seeded(self, settings):
        values = {s.key: s.value for s in settings.all()}
        assert values["limits.tip.daily_max"] == 100
        assert values["features.tips_enabled"] is True
        assert set(values) == set(DEFAULT_SETTINGS)

    def test_seed_is_idempotent(self, db_engine):
        assert seed_default_settings(db_engine) == 0


class TestReads:
    def test_typed_getters(self, settings):
        assert settings.get_int("limits.earning.daily_max") == 100
        assert settings.get_bool("features.leaderboard_enabled") is True

    def test_missing_key_returns_default(self, settings):
        assert settings.get("no.such.key") is None
        assert settings.get_int("no.such.key", 7) == 7

    def test_cached_until_ttl(self, db_engine, settings, monotonic):
        assert settings.get_int("limits.tip.daily_max") == 100
        _write_behind_cache(db_engine, "limits.tip.daily_max", 25)

        monotonic.advance(299)
        assert settings.get_int("limits.tip.daily_max") == 100

        monotonic.advance(1)
        assert settings.get_int("limits.tip.daily_max") == 25

    def test_stores_with_separate_caches_do_not_share(self, db_engine, monotonic):
        a = SettingsStore(db_engine, SettingsCache(300, clock=monotonic))
        b = SettingsStore(db_engine, SettingsCache(300, clock=monotonic))
        assert a.get_int("limits.tip.daily_max") == 100
        _write_behind_cache(db_engine, "limits.tip.daily_max", 30)
        assert b.get_int("limits.tip.daily_max") == 30
        assert a.get_int("limits.tip.daily_max") == 100


class _PausedSession:
    """Stands in for a unit of work whose settings read is slow.

    ``get`` signals that it has started, then blocks until released and
    returns a row read before the test began.
    """

    def __init__(self, row):
        self.row = row
        self.loading = threading.Event()
        self.release = threading.Event()

    def get(self, model, key):
        self.loading.set()
        assert self.release.wait(5)
        return self.row


class TestWrites:
    def test_write_is_visible_to_writer_immediately(self, settings):
        assert settings.get_int("limits.tip.daily_max") == 100
        settings.set("limits.tip.daily_max", 40, updated_by="42")
        assert settings.get_int("limits.tip.daily_max") == 40

    def test_slow_reader_cannot_recache_old_value(self, db_engine, settings):
        key = "limits.earning.daily_max"
        with Session(db_engine) as s:
            old_row = s.get(GemsSetting, key)
            s.expunge(old_row)

        slow = _PausedSession(old_row)
        reader = threading.Thread(target=settings.get, args=(key, slow))
        reader.start()
        assert slow.loading.wait(5)

        settings.set(key, 20, "admin-1")
        slow.release.set()
        reader.join(5)

        assert not reader.is_alive()
        assert settings.get_int(key) == 20

    def test_write_records_audit_entry(self, db_engine, settings):
        settings.set("features.tips_enabled", False, updated_by="42")
        with Session(db_engine) as s:
            log = s.scalars(
                select(AdminLog).where(AdminLog.target_id == "features.tips_enabled")
            ).one()
        assert log.action_type == "UPDATE"
        assert log.actor_id == "42"
        assert log.before_snapshot == {"key": "features.tips_enabled", "value": True}
        assert log.after_snapshot == {"key": "features.tips_enabled", "value": False}

    def test_updated_by_recorded(self, settings):
        result = settings.set("limits.tip.max_amount", 75, updated_by="42")
        assert result.updated_by == "42"
        assert result.value == 75

    def test_unknown_key_rejected(self, settings):
        with pytest.raises(InvalidInput):
            settings.set("limits.bogus", 1, updated_by="42")

    def test_min_above_max_rejected(self, settings):
        with pytest.raises(InvalidInput) as exc:
            settings.set("limits.tip.min_amount", 60, updated_by="42")
        assert exc.value.details["max_amount"] == 50
        assert settings.get_int("limits.tip.min_amount") == 1

    def test_failed_write_leaves_value(self, settings):
        with pytest.raises(InvalidInput):
            settings.set("limits.tip.daily_max", -5, updated_by="42")
        assert settings.get_int("limits.tip.daily_max") == 100


class TestValidation:
    @pytest.mark.parametrize("value", ["10", 2.5, None, True])
    def test_int_keys_reject_non_ints(self, value):
        with pytest.raises(InvalidInput):
            validate_setting_value("limits.tip.daily_max", value)

    def test_bool_keys_reject_ints(self):
        with pytest.raises(InvalidInput):
            validate_setting_value("features.tips_enabled", 1)

    def test_min_tip_at_least_one(self):
        with pytest.raises(InvalidInput):
            validate_setting_value("limits.tip.min_amount", 0)

    def test_zero_daily_cap_allowed(self):
        assert validate_setting_value("limits.earning.daily_max", 0) == 0

    @pytest.mark.parametrize(
        "raw, expected",
        [("yes", True), ("OFF", False), (" true ", True), ("disabled", False)],
    )
    def test_parse_bool_words(self, raw, expected):
        assert parse_setting_input("features.tips_enabled", raw) is expected

    def test_parse_int(self):
        assert parse_setting_input("limits.tip.daily_max", " 150 ") == 150

    def test_parse_garbage(self):
        with pytest.raises(InvalidInput):
            parse_setting_input("limits.tip.daily_max", "lots")
