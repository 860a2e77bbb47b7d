"""Database helpers backed by SQLAlchemy."""

from __future__ import annotations

from typing import Optional

from flask import current_app
from sqlalchemy.engine import Engine

from visit_ledger.extensions import db as sa_db
from visit_ledger.models import metadata, user_settings, visits_table
from visit_ledger.services.visits import VisitStore


def engine() -> Engine:
    return sa_db.engine


def visit_store(collection: Optional[str] = None) -> VisitStore:
    """Return the store for the configured visits collection."""

    name = collection or current_app.config["VISITS_COLLECTION"]
    return VisitStore(sa_db.engine, name)


def ensure_schema(collection: str) -> None:
    """Create the visits collection and settings table if migrations did not."""

    metadata.create_all(sa_db.engine, tables=[visits_table(collection), user_settings], checkfirst=True)
