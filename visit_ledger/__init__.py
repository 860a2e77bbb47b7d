"""Visit ledger package exposing the Flask application factory."""

from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError

from .blueprints import register_blueprints
from .extensions import init_extensions
from .models import validate_collection
from .services.auto_migrate import auto_upgrade
from .services.database import ensure_schema
from .services.import_types import DEFAULT_PROCEDURE
from .services.visits import MAX_BATCH_SIZE
from .cli import register_cli
from . import auth  # noqa: F401  registers the request loader

APP_HOST = "127.0.0.1"
APP_PORT = 8080


def _data_root(base_dir: Path, override: Path | None = None) -> Path:
    root = override if override else base_dir / "data"
    root.mkdir(parents=True, exist_ok=True)
    for sub in ("logs", "import_reports", "projects"):
        (root / sub).mkdir(parents=True, exist_ok=True)
    return root


def _batch_size() -> int:
    try:
        value = int(os.getenv("LEDGER_IMPORT_BATCH_SIZE", "400"))
    except ValueError:
        value = 400
    return max(1, min(value, MAX_BATCH_SIZE))


def create_app() -> Flask:
    repo_root = Path(__file__).resolve().parent.parent
    db_override = os.getenv("LEDGER_DB_PATH")
    override_root = Path(db_override).parent if db_override else None
    data_root = _data_root(repo_root, override_root)
    db_path = Path(db_override) if db_override else data_root / "app.db"

    app = Flask(__name__)

    secret_key = os.getenv("LEDGER_SECRET_KEY")
    if not secret_key:
        secret_key = os.urandom(32)

    app.config.update(
        SECRET_KEY=secret_key,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False}},
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        DATA_ROOT=str(data_root),
        DEFAULT_PROCEDURE=os.getenv("LEDGER_DEFAULT_PROCEDURE", DEFAULT_PROCEDURE).strip() or DEFAULT_PROCEDURE,
        VISITS_COLLECTION=validate_collection(os.getenv("LEDGER_VISITS_COLLECTION", "visits")),
        IMPORT_BATCH_SIZE=_batch_size(),
        MAX_CONTENT_LENGTH=10 * 1024 * 1024,
    )

    init_extensions(app)
    register_blueprints(app)
    auto_upgrade(app)
    ensure_schema(app.config["VISITS_COLLECTION"])
    register_cli(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning("CSRF validation failed: %s", e)
        return jsonify({"success": False, "errors": [f"CSRF validation failed: {e.description}"]}), 400

    @app.errorhandler(400)
    def handle_bad_request(e):
        return jsonify({"success": False, "errors": ["bad_request"]}), 400

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({"success": False, "errors": ["not_found"]}), 404

    @app.errorhandler(429)
    def handle_rate_limited(e):
        return jsonify({"success": False, "errors": ["rate_limited"]}), 429

    return app


__all__ = ["create_app", "APP_HOST", "APP_PORT"]
