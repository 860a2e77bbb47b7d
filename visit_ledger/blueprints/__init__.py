"""Blueprint registration."""

from __future__ import annotations

from flask import Flask


def register_blueprints(app: Flask) -> None:
    from visit_ledger.blueprints.settings import bp as settings_bp
    from visit_ledger.blueprints.visits import bp as visits_bp

    app.register_blueprint(visits_bp)
    app.register_blueprint(settings_bp)
