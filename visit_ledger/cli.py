"""Flask CLI commands for migrations, visit import and owner migration."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Optional

import click
from alembic import command
from flask import current_app
from flask.cli import AppGroup, with_appcontext
from sqlalchemy import inspect
from sqlalchemy.engine import make_url

from visit_ledger.extensions import create_store_engine, db
from visit_ledger.models import validate_collection
from visit_ledger.services.auto_migrate import alembic_config
from visit_ledger.services.batch_writer import BatchCommitError, write_drafts
from visit_ledger.services.import_types import DELIMITERS, ImportFatalError, ImportOptions
from visit_ledger.services.owner_migration import (
    DEFAULT_PAGE_SIZE,
    MigrationReport,
    load_owner_map,
    migrate_owner_uid,
)
from visit_ledger.services.visit_import import (
    FORMAT_CHOICES,
    parse_visits,
    read_import_file,
    summarize,
)
from visit_ledger.services.visits import MAX_BATCH_SIZE, VisitStore

WARNINGS_SHOWN = 20

_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,62}$")


class ToolCommand(click.Command):
    """Command whose usage errors exit with status 1 like any other failure."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as exc:
            exc.exit_code = 1
            raise


def _load_service_account(path: Optional[str]) -> dict[str, Any]:
    path = path or os.getenv("LEDGER_SERVICE_ACCOUNT_JSON")
    if not path:
        return {}
    account_path = Path(path)
    if not account_path.is_file():
        raise click.ClickException(f"Service account file not found: {path}")
    try:
        account = json.loads(account_path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise click.ClickException(f"Invalid service account JSON: {exc}") from exc
    if not isinstance(account, dict):
        raise click.ClickException("Service account file must contain a JSON object.")
    return account


def resolve_database_url(
    project_id: Optional[str], service_account: Optional[str], create: bool = True
) -> Optional[str]:
    """Pick the database for a tool run; ``None`` means the app database."""
    account = _load_service_account(service_account)
    if not project_id and account.get("database_url"):
        return str(account["database_url"])
    project_id = project_id or os.getenv("LEDGER_PROJECT_ID") or account.get("project_id")
    if not project_id:
        return None
    if not _PROJECT_ID_RE.match(str(project_id)):
        raise click.ClickException(f"Invalid project id: {project_id}")
    projects_dir = Path(current_app.config["DATA_ROOT"]) / "projects"
    if create:
        projects_dir.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{projects_dir / f'{project_id}.db'}"


def _sqlite_file_missing(url: str) -> bool:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return False
    database = parsed.database
    return bool(database) and database != ":memory:" and not Path(database).exists()


def open_store(
    collection: str,
    project_id: Optional[str],
    service_account: Optional[str],
    create: bool = True,
) -> Optional[VisitStore]:
    """Open the target store; ``create=False`` never creates files or tables.

    A read-only open of a missing database or collection returns ``None``.
    """
    url = resolve_database_url(project_id, service_account, create=create)
    if url is not None and not create and _sqlite_file_missing(url):
        return None
    engine = db.engine if url is None else create_store_engine(url)
    store = VisitStore(engine, collection)
    if create:
        store.ensure_collection()
    elif not inspect(engine).has_table(store.table.name):
        return None
    return store


def _collection_option(value: Optional[str]) -> str:
    try:
        return validate_collection(value or current_app.config["VISITS_COLLECTION"])
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc


def _number(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def _echo_preview(drafts) -> None:
    if not drafts:
        return
    click.echo("\nPreview (first 5 rows):")
    for draft in drafts:
        click.echo(
            f"  {draft.visit_date} | {draft.patient_name} | {_number(draft.amount)} | "
            f"{_number(draft.percent)}% | {_number(draft.doctor_income)} | {draft.procedure_name}"
        )


def register_cli(app) -> None:
    db_group = AppGroup("db")

    @db_group.command("upgrade")
    @with_appcontext
    def upgrade() -> None:
        command.upgrade(alembic_config(current_app.config["SQLALCHEMY_DATABASE_URI"]), "head")
        click.echo("Database upgraded to head.")

    app.cli.add_command(db_group)

    @app.cli.command("import-visits", cls=ToolCommand)
    @click.option("--file", "file_path", required=True, help="CSV/TSV or JSON file to import.")
    @click.option("--uid", default=None, help="Owner uid for every row (required for CSV).")
    @click.option("--format", "input_format", type=click.Choice(FORMAT_CHOICES), default="auto", show_default=True)
    @click.option("--apply", is_flag=True, default=False, help="Write to the store (default is a dry run).")
    @click.option("--collection", default=None, help="Target collection (default from config).")
    @click.option("--project-id", default=None)
    @click.option("--service-account", default=None, type=click.Path(dir_okay=False))
    @click.option(
        "--delimiter",
        type=click.Choice(["auto", *DELIMITERS]),
        default="auto",
        show_default=True,
    )
    @click.option("--default-procedure", default=None)
    @click.option("--year", type=click.IntRange(2000, 2100), default=None, help="Year for dates without one.")
    @with_appcontext
    def import_visits(
        file_path: str,
        uid: Optional[str],
        input_format: str,
        apply: bool,
        collection: Optional[str],
        project_id: Optional[str],
        service_account: Optional[str],
        delimiter: str,
        default_procedure: Optional[str],
        year: Optional[int],
    ) -> None:
        """Import visits from a spreadsheet export or a JSON dump."""
        collection = _collection_option(collection)
        option_values = {
            "uid": (uid or "").strip() or None,
            "input_format": input_format,
            "delimiter": delimiter,
            "default_procedure": (default_procedure or "").strip() or current_app.config["DEFAULT_PROCEDURE"],
        }
        if year is not None:
            option_values["default_year"] = year
        options = ImportOptions(**option_values)
        batch_size = current_app.config["IMPORT_BATCH_SIZE"]

        try:
            raw_text = read_import_file(file_path)
            outcome = parse_visits(raw_text, options, path=file_path)
        except ImportFatalError as exc:
            raise click.ClickException(str(exc)) from exc

        summary = summarize(outcome, batch_size)
        click.echo("Import summary")
        click.echo(f"Mode: {'APPLY' if apply else 'DRY-RUN'}")
        click.echo(f"File: {file_path}")
        click.echo(f"Input format: {summary.input_format.value}")
        if summary.delimiter:
            click.echo(f"Delimiter: {summary.delimiter}")
            click.echo(f"Header detected: {'yes' if summary.has_header else 'no'}")
        if options.uid:
            click.echo(f"UID override: {options.uid}")
        click.echo(f"Target UIDs: {', '.join(summary.owner_uids) if summary.owner_uids else '(none)'}")
        click.echo(f"Collection: {collection}")
        click.echo(f"Parsed rows: {summary.rows}")
        click.echo(f"Total amount: {_number(summary.total_amount)}")
        click.echo(f"Total doctor income: {_number(summary.total_income)}")
        click.echo(f"Planned batches: {summary.batches}")
        if summary.timestamp_fallbacks:
            click.echo(
                f"Unparseable createdAt/updatedAt values: {summary.timestamp_fallbacks} "
                "(commit time will be used)"
            )

        if outcome.warnings:
            click.echo(f"Warnings: {len(outcome.warnings)}")
            for warning in outcome.warnings[:WARNINGS_SHOWN]:
                click.echo(f"  - {warning}")
            if len(outcome.warnings) > WARNINGS_SHOWN:
                click.echo(f"  ...and {len(outcome.warnings) - WARNINGS_SHOWN} more warnings.")

        _echo_preview(summary.preview)

        if not apply:
            click.echo("\nNo changes were written. Re-run with --apply to import.")
            return
        if not outcome.drafts:
            click.echo("\nNothing to import.")
            return

        store = open_store(collection, project_id, service_account)
        try:
            report = write_drafts(store, outcome.drafts, batch_size)
        except BatchCommitError as exc:
            raise click.ClickException(f"Import failed after {exc.written} documents: {exc.cause}") from exc
        click.echo(f"\nImported documents: {report.created}")

    @app.cli.command("migrate-owner-uid", cls=ToolCommand)
    @click.option("--apply", is_flag=True, default=False, help="Write updates (default is a dry run).")
    @click.option("--collection", default=None)
    @click.option("--project-id", default=None)
    @click.option("--service-account", default=None, type=click.Path(dir_okay=False))
    @click.option("--all-to-uid", default=None, help="Assign every ownerless visit to this uid.")
    @click.option("--map-file", default=None, type=click.Path(dir_okay=False), help="JSON docId -> uid map.")
    @click.option("--page-size", type=click.IntRange(1), default=DEFAULT_PAGE_SIZE, show_default=True)
    @click.option("--limit", type=click.IntRange(0), default=0, help="Max documents to assign (0 = no limit).")
    @with_appcontext
    def migrate_owner(
        apply: bool,
        collection: Optional[str],
        project_id: Optional[str],
        service_account: Optional[str],
        all_to_uid: Optional[str],
        map_file: Optional[str],
        page_size: int,
        limit: int,
    ) -> None:
        """Assign owners to visits written before per-user ownership."""
        if not (all_to_uid or "").strip() and not map_file:
            raise click.ClickException("Provide either --all-to-uid or --map-file.")
        collection = _collection_option(collection)
        try:
            mapping = load_owner_map(map_file)
        except ImportFatalError as exc:
            raise click.ClickException(str(exc)) from exc

        store = open_store(collection, project_id, service_account, create=apply)
        if store is None:
            report = MigrationReport(applied=apply)
        else:
            report = migrate_owner_uid(
                store,
                all_to_uid=all_to_uid,
                mapping=mapping,
                page_size=min(page_size, MAX_BATCH_SIZE),
                limit=limit or None,
                apply=apply,
            )

        click.echo("Migration summary")
        click.echo(f"Collection: {collection}")
        click.echo(f"Mode: {'APPLY' if apply else 'DRY-RUN'}")
        click.echo(f"Scanned docs: {report.scanned}")
        click.echo(f"Already owned: {report.already_owned}")
        click.echo(f"Ownerless docs: {report.ownerless}")
        click.echo(f"Assignable docs: {report.assignable}")
        click.echo(f"Skipped (no uid mapping): {report.skipped}")
        click.echo(f"Updated docs: {report.updated}")
        if not apply:
            click.echo("No changes were written. Re-run with --apply to persist updates.")
