"""Per-owner settings blueprint."""

from __future__ import annotations

from visit_ledger.blueprints.settings import routes

bp = routes.bp

__all__ = ["bp"]
