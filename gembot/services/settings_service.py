"""
gembot.services.settings_service — SettingsStore (typed, cached, audited)
==========================================================================

Typed read/write access to the ``gems_settings`` table.

* Reads go through an injected :class:`~gembot.engine.cache.SettingsCache`
  and hit the database at most once per TTL window per key.
* Writes are validated against the type of the key's default value
  (``int`` for earning/limits, ``bool`` for features), written through,
  recorded in ``admin_log`` and invalidate the cached entry immediately.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from gembot.database.engine import get_session
from gembot.database.models import AdminActionType, AdminLog, GemsSetting
from gembot.database.seed import DEFAULT_SETTINGS
from gembot.engine.cache import SettingsCache
from gembot.errors import InvalidInput
from gembot.services.transaction_ledger import as_utc

logger = logging.getLogger(__name__)

_TRUE_WORDS = frozenset({"true", "yes", "on", "1", "enabled"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0", "disabled"})


@dataclass(frozen=True, slots=True)
class SettingValue:
    key: str
    value: Any
    category: str
    description: str | None
    updated_by: str
    updated_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "category": self.category,
            "description": self.description,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def _decode(value_json: str) -> Any:
    try:
        return json.loads(value_json)
    except (json.JSONDecodeError, TypeError):
        return value_json


def _to_value(row: GemsSetting) -> SettingValue:
    return SettingValue(
        key=row.key,
        value=_decode(row.value_json),
        category=row.category,
        description=row.description,
        updated_by=row.updated_by,
        updated_at=as_utc(row.updated_at),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_setting_value(key: str, value: Any) -> Any:
    """Check *value* against the expected type for *key* and return it.

    Raises :class:`InvalidInput` for unknown keys, wrong types and
    negative numbers.
    """
    if key not in DEFAULT_SETTINGS:
        raise InvalidInput(f"Unknown setting: {key}", {"key": key})

    default, _category, _desc = DEFAULT_SETTINGS[key]
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise InvalidInput(
                f"Setting {key} expects true/false, got {value!r}",
                {"key": key, "expected": "bool"},
            )
        return value

    # bool is an int subclass; reject it explicitly for numeric keys
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(
            f"Setting {key} expects a whole number, got {value!r}",
            {"key": key, "expected": "int"},
        )
    if value < 0:
        raise InvalidInput(
            f"Setting {key} cannot be negative", {"key": key, "value": value},
        )
    if key == "limits.tip.min_amount" and value < 1:
        raise InvalidInput(
            "Minimum tip must be at least 1", {"key": key, "value": value},
        )
    return value


def parse_setting_input(key: str, raw: str) -> Any:
    """Convert free text from a slash command into the key's expected type."""
    if key not in DEFAULT_SETTINGS:
        raise InvalidInput(f"Unknown setting: {key}", {"key": key})
    default = DEFAULT_SETTINGS[key][0]
    text = raw.strip().lower()
    if isinstance(default, bool):
        if text in _TRUE_WORDS:
            return True
        if text in _FALSE_WORDS:
            return False
        raise InvalidInput(f"Setting {key} expects true/false, got {raw!r}", {"key": key})
    try:
        return int(text)
    except ValueError:
        raise InvalidInput(
            f"Setting {key} expects a whole number, got {raw!r}", {"key": key},
        ) from None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class SettingsStore:
    """Cached, validated access to GEMS settings.

    Usage:
        store = SettingsStore(engine, SettingsCache(ttl_seconds=300))
        daily_max = store.get_int("limits.earning.daily_max", 100)
        store.set("limits.earning.daily_max", 150, updated_by="1234")
    """

    def __init__(self, engine: Engine, cache: SettingsCache | None = None) -> None:
        self._engine = engine
        self.cache = cache if cache is not None else SettingsCache()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get(self, key: str, session: Session | None = None) -> SettingValue | None:
        """Return the setting, from cache when fresh, else from the DB.

        Pass *session* to reload inside a unit of work that is already
        open, so the read shares its connection.
        """
        generation = self.cache.generation(key)
        entry = self.cache.lookup(key)
        if entry is not None:
            return entry.value

        if session is not None:
            row = session.get(GemsSetting, key)
            value = _to_value(row) if row is not None else None
        else:
            with get_session(self._engine) as own:
                row = own.get(GemsSetting, key)
                value = _to_value(row) if row is not None else None
        if self.cache.put(key, value, generation=generation):
            logger.debug("Setting %s reloaded from database", key)
        return value

    def get_value(self, key: str, default: Any = None, *, session: Session | None = None) -> Any:
        setting = self.get(key, session)
        if setting is None or setting.value is None:
            return default
        return setting.value

    def get_int(self, key: str, default: int = 0, *, session: Session | None = None) -> int:
        val = self.get_value(key, session=session)
        if val is None or isinstance(val, bool):
            return default
        try:
            return int(val)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False, *, session: Session | None = None) -> bool:
        val = self.get_value(key, session=session)
        if val is None:
            return default
        return bool(val)

    def all(self) -> list[SettingValue]:
        """Every setting row, ordered by category then key (uncached)."""
        with get_session(self._engine) as session:
            rows = session.scalars(
                select(GemsSetting).order_by(GemsSetting.category, GemsSetting.key)
            ).all()
            return [_to_value(r) for r in rows]

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def set(self, key: str, value: Any, updated_by: str) -> SettingValue:
        """Validate, write through, audit, and invalidate the cache entry."""
        value = validate_setting_value(key, value)
        if not updated_by:
            raise InvalidInput("updated_by is required", {"key": key})

        _default, category, description = DEFAULT_SETTINGS[key]
        value_json = json.dumps(value)

        with get_session(self._engine) as session:
            if key in ("limits.tip.min_amount", "limits.tip.max_amount"):
                self._check_tip_bounds(session, key, value)

            row = session.get(GemsSetting, key)
            before = None
            if row is None:
                row = GemsSetting(
                    key=key,
                    value_json=value_json,
                    category=category.value,
                    description=description,
                    updated_by=str(updated_by),
                )
                session.add(row)
            else:
                before = {"key": key, "value": _decode(row.value_json)}
                row.value_json = value_json
                row.updated_by = str(updated_by)

            session.add(AdminLog(
                actor_id=str(updated_by),
                action_type=(
                    AdminActionType.UPDATE.value if before else AdminActionType.CREATE.value
                ),
                target_table="gems_settings",
                target_id=key,
                before_snapshot=before,
                after_snapshot={"key": key, "value": value},
            ))
            session.flush()
            session.refresh(row)
            result = _to_value(row)

        self.cache.invalidate(key)
        logger.info("Setting %s updated to %r by %s", key, value, updated_by)
        return result

    def _check_tip_bounds(self, session: Session, key: str, value: int) -> None:
        """Keep limits.tip.min_amount <= limits.tip.max_amount."""
        other_key = (
            "limits.tip.max_amount" if key == "limits.tip.min_amount"
            else "limits.tip.min_amount"
        )
        other_row = session.get(GemsSetting, other_key)
        other = (
            _decode(other_row.value_json) if other_row is not None
            else DEFAULT_SETTINGS[other_key][0]
        )
        low, high = (value, other) if key == "limits.tip.min_amount" else (other, value)
        if low > high:
            raise InvalidInput(
                f"Tip minimum ({low}) cannot exceed tip maximum ({high})",
                {"key": key, "min_amount": low, "max_amount": high},
            )
