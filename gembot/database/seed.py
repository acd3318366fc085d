"""
gembot.database.seed — Default GEMS Settings Seeder
====================================================

Baseline settings seeded on first startup so earning, tipping and the
leaderboard work out of the box.

Idempotent — only inserts keys that don't already exist.  Values changed by
an admin are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine

from gembot.database.engine import get_session
from gembot.database.models import GemsSetting, SettingCategory

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, SettingCategory, str]] = {
    "earning.message.daily_amount": (
        5, SettingCategory.EARNING, "GEMS earned for daily message activity",
    ),
    "earning.message.cooldown_hours": (
        24, SettingCategory.EARNING, "Hours between message activity rewards",
    ),
    "earning.showcase.amount": (
        10, SettingCategory.EARNING, "GEMS earned for showcase channel messages",
    ),
    "earning.verification.jewelry": (
        500, SettingCategory.EARNING, "GEMS earned for jewelry verification",
    ),
    "earning.verification.industry": (
        100, SettingCategory.EARNING, "GEMS earned for industry verification",
    ),
    "earning.spotlight.amount": (
        250, SettingCategory.EARNING, "GEMS earned for being spotlighted",
    ),
    "limits.tip.daily_max": (
        100, SettingCategory.LIMITS, "Maximum GEMS that can be tipped per day",
    ),
    "limits.tip.min_amount": (1, SettingCategory.LIMITS, "Minimum GEMS per tip"),
    "limits.tip.max_amount": (50, SettingCategory.LIMITS, "Maximum GEMS per single tip"),
    "limits.earning.daily_max": (
        100, SettingCategory.LIMITS, "Maximum GEMS that can be earned per day",
    ),
    "features.tips_enabled": (
        True, SettingCategory.FEATURES, "Enable/disable tip functionality",
    ),
    "features.leaderboard_enabled": (
        True, SettingCategory.FEATURES, "Enable/disable leaderboard",
    ),
    "features.daily_rewards_enabled": (
        True, SettingCategory.FEATURES, "Enable/disable daily activity rewards",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> int:
    """Insert default settings that don't yet exist.

    Returns the number of rows inserted.
    """
    inserted = 0
    with get_session(engine) as session:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            if session.get(GemsSetting, key) is None:
                session.add(GemsSetting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category.value,
                    description=desc,
                    updated_by="system",
                ))
                inserted += 1

    if inserted:
        logger.info("Seeded %d default GEMS settings.", inserted)
    return inserted
