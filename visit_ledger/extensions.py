"""Application extensions (SQLAlchemy engine, CSRF, limiter, login manager)."""

from __future__ import annotations

import os
from typing import Any

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_wtf import CSRFProtect
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def create_store_engine(uri: str, **engine_options: Any) -> Engine:
    """Create an engine; SQLite connections get WAL + busy timeout pragmas."""
    engine = create_engine(uri, future=True, **engine_options)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _set_pragmas(dbapi_connection, connection_record) -> None:  # type: ignore[override]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


class SQLAlchemyEngine:
    """Minimal SQLAlchemy integration for the app."""

    def __init__(self) -> None:
        self._engine: Engine | None = None

    def init_app(self, app: Flask) -> None:
        uri = app.config["SQLALCHEMY_DATABASE_URI"]
        engine_options = app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {})
        self._engine = create_store_engine(uri, **engine_options)
        app.extensions["db"] = self

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("SQLAlchemy engine is not initialised")
        return self._engine


db = SQLAlchemyEngine()
csrf = CSRFProtect()
limiter = Limiter(get_remote_address, storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"))
login_manager = LoginManager()


def init_extensions(app: Flask) -> None:
    db.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
    login_manager.init_app(app)
