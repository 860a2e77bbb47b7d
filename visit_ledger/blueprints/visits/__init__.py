"""Visits ledger blueprint."""

from __future__ import annotations

from visit_ledger.blueprints.visits import routes

bp = routes.bp

__all__ = ["bp"]
