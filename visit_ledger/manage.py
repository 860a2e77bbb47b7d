"""Console entry point: ``visit-ledger import-visits ...``."""

from __future__ import annotations

from flask.cli import FlaskGroup

from visit_ledger import create_app

cli = FlaskGroup(create_app=create_app, help="Visit ledger management commands.")
