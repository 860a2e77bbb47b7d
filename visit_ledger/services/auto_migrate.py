"""Automatically run Alembic migrations when the app starts."""

from __future__ import annotations

import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from flask import Flask

REPO_ROOT = Path(__file__).resolve().parents[2]


def alembic_config(database_uri: str) -> Config:
    cfg = Config(str(REPO_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(REPO_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_uri)
    cfg.attributes["configure_logger"] = False
    return cfg


def auto_upgrade(app: Flask) -> None:
    """Run `alembic upgrade head` automatically if enabled."""

    if os.getenv("LEDGER_AUTO_MIGRATE", "1") != "1":
        return

    if not (REPO_ROOT / "alembic.ini").exists() or not (REPO_ROOT / "migrations").exists():
        return

    try:
        command.upgrade(alembic_config(app.config["SQLALCHEMY_DATABASE_URI"]), "head")
    except Exception as exc:  # pragma: no cover - logged and skipped
        app.logger.warning("Auto migration skipped: %s", exc)
