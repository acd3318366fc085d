"""
tests/test_migrations.py — Alembic Environment
===============================================

Runs the migration chain against a throwaway SQLite file through
``alembic/env.py``, the same way ``alembic -x url=... upgrade head`` does.
"""

from __future__ import annotations

from argparse import Namespace
from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect

from alembic import command
from alembic.config import Config

ALEMBIC_DIR = Path(__file__).resolve().parents[1] / "alembic"


def _config(url: str | None) -> Config:
    cfg = Config(cmd_opts=Namespace(x=[f"url={url}"] if url else []))
    cfg.set_main_option("script_location", str(ALEMBIC_DIR))
    return cfg


class TestUpgrade:
    def test_upgrade_head_creates_ledger_tables(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'migrate.db'}"
        command.upgrade(_config(url), "head")

        engine = create_engine(url)
        tables = set(inspect(engine).get_table_names())
        engine.dispose()
        assert {"gems_balances", "gems_transactions", "gems_settings", "admin_log"} <= tables

    def test_downgrade_drops_tables(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'migrate.db'}"
        command.upgrade(_config(url), "head")
        command.downgrade(_config(url), "base")

        engine = create_engine(url)
        tables = set(inspect(engine).get_table_names())
        engine.dispose()
        assert "gems_balances" not in tables

    def test_offline_mode_renders_sql(self, tmp_path, capsys):
        command.upgrade(_config(f"sqlite:///{tmp_path / 'unused.db'}"), "head", sql=True)
        assert "CREATE TABLE gems_balances" in capsys.readouterr().out
        assert not (tmp_path / "unused.db").exists()

    def test_missing_url_is_an_error(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setattr("dotenv.load_dotenv", lambda *a, **kw: False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            command.upgrade(_config(None), "head")
