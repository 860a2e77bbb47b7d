import os
import pathlib
import shutil
import sys

import pytest

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from visit_ledger import create_app
from visit_ledger.extensions import db
from visit_ledger.services.visits import VisitStore, prepare_draft


@pytest.fixture(scope="session")
def _template_db(tmp_path_factory):
    """Build a migrated DB once per session; each ``app`` copies it."""
    db_path = tmp_path_factory.mktemp("template") / "app.db"
    old_env = {key: os.environ.get(key) for key in ("LEDGER_DB_PATH", "LEDGER_SECRET_KEY")}
    os.environ["LEDGER_DB_PATH"] = str(db_path)
    os.environ["LEDGER_SECRET_KEY"] = "test-secret"
    try:
        _app = create_app()
        with _app.app_context():
            pass
    finally:
        for key, value in old_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
    return db_path


@pytest.fixture
def app(tmp_path, monkeypatch, _template_db):
    db_path = tmp_path / "app.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("LEDGER_DB_PATH", str(db_path))
    monkeypatch.setenv("LEDGER_SECRET_KEY", "test-secret")
    monkeypatch.setenv("LEDGER_AUTO_MIGRATE", "0")  # Already migrated
    monkeypatch.delenv("LEDGER_PROJECT_ID", raising=False)
    monkeypatch.delenv("LEDGER_SERVICE_ACCOUNT_JSON", raising=False)
    app = create_app()
    app.config.update(TESTING=True)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def owner_headers():
    return {"X-Owner-Uid": "owner-1"}


@pytest.fixture
def store(app):
    return VisitStore(db.engine, app.config["VISITS_COLLECTION"])


@pytest.fixture
def add_visit(store):
    """Insert a visit directly through the store and return its id."""

    def _add(owner="owner-1", visit_date="2026-02-19", patient="Іваненко Петро", amount=1000, percent=30, notes=""):
        draft = prepare_draft(
            visit_date=visit_date,
            patient_name=patient,
            procedure_name="Консультація",
            amount=amount,
            percent=percent,
            notes=notes,
        )
        return store.create(owner, draft)

    return _add
