"""Visits ledger JSON API: month ledger, calendar, CRUD, export and import."""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from pathlib import Path

from flask import Blueprint, Response, current_app, jsonify, request
from flask_login import current_user, login_required
from werkzeug.utils import secure_filename

from visit_ledger.extensions import csrf, limiter
from visit_ledger.forms.visits import VisitForm
from visit_ledger.services.batch_writer import BatchCommitError, write_drafts
from visit_ledger.services.database import visit_store
from visit_ledger.services.errors import record_exception
from visit_ledger.services.field_parsers import pick_procedure
from visit_ledger.services.import_types import DELIMITERS, ImportFatalError, ImportOptions
from visit_ledger.services.visit_import import FORMAT_CHOICES, draft_preview, parse_visits, summarize
from visit_ledger.services.visits import VisitError, prepare_draft
from visit_ledger.services.visits_analytics import (
    add_months,
    build_calendar,
    build_dashboard_vm,
    current_month,
    filter_visits,
    sort_visits,
)

bp = Blueprint("visits", __name__, url_prefix="/visits")
csrf.exempt(bp)

EXPORT_COLUMNS = ("Date", "Patient", "Amount", "Percent", "Procedure", "Notes", "Doctor income")


def _error(errors, status: int = 400):
    return jsonify({"success": False, "errors": list(errors)}), status


def _selected_month() -> str:
    fallback = current_month()
    return add_months(request.args.get("month") or fallback, 0, fallback)


def _form_errors(form: VisitForm):
    errors = [f"{name}: {message}" for name, messages in form.errors.items() for message in messages]
    return _error(errors or ["invalid_request"])


def _draft_from_form(form: VisitForm):
    patient_name = form.patient_name.data or ""
    return prepare_draft(
        visit_date=form.visit_date.data.isoformat(),
        patient_name=patient_name,
        procedure_name=pick_procedure(
            patient_name, form.procedure_name.data, current_app.config["DEFAULT_PROCEDURE"]
        ),
        amount=float(form.amount.data),
        percent=float(form.percent.data),
        notes=form.notes.data or "",
        owner_uid=current_user.uid,
    )


@bp.route("/", methods=["GET"])
@login_required
def index():
    """Ledger for one month with dashboard totals and trends."""
    month = _selected_month()
    previous_month = add_months(month, -1, month)
    store = visit_store()
    try:
        visits = store.list_month(current_user.uid, month)
        previous = store.list_month(current_user.uid, previous_month)
    except Exception as exc:
        record_exception("visits.index", exc)
        return _error(["internal_error"], 500)

    vm = build_dashboard_vm(visits, previous)
    shown = sort_visits(filter_visits(vm.visits, request.args.get("q")), request.args.get("sort"))
    payload = vm.to_dict()
    payload["visits"] = [visit.to_dict() for visit in shown]
    return jsonify(
        {
            "success": True,
            "month": month,
            "previous_month": previous_month,
            "next_month": add_months(month, 1, month),
            **payload,
        }
    )


@bp.route("/calendar", methods=["GET"])
@login_required
def calendar_view():
    month = _selected_month()
    try:
        visits = visit_store().list_month(current_user.uid, month)
    except Exception as exc:
        record_exception("visits.calendar", exc)
        return _error(["internal_error"], 500)
    return jsonify({"success": True, "month": month, "weeks": build_calendar(visits, month)})


@bp.route("/", methods=["POST"])
@login_required
def create_visit():
    form = VisitForm(meta={"csrf": False})
    if not form.validate_on_submit():
        return _form_errors(form)
    try:
        visit_id = visit_store().create(current_user.uid, _draft_from_form(form))
    except Exception as exc:
        record_exception("visits.create", exc)
        return _error(["internal_error"], 500)
    current_app.logger.info("visit %s created", visit_id)
    return jsonify({"success": True, "id": visit_id}), 201


@bp.route("/<visit_id>", methods=["POST"])
@login_required
def update_visit(visit_id: str):
    form = VisitForm(meta={"csrf": False})
    if not form.validate_on_submit():
        return _form_errors(form)
    try:
        visit_store().update(current_user.uid, visit_id, _draft_from_form(form))
    except VisitError as exc:
        return _error([str(exc)], 404)
    except Exception as exc:
        record_exception("visits.update", exc)
        return _error(["internal_error"], 500)
    return jsonify({"success": True, "id": visit_id})


@bp.route("/<visit_id>/delete", methods=["POST"])
@login_required
def delete_visit(visit_id: str):
    try:
        visit_store().delete(current_user.uid, visit_id)
    except VisitError as exc:
        return _error([str(exc)], 404)
    except Exception as exc:
        record_exception("visits.delete", exc)
        return _error(["internal_error"], 500)
    current_app.logger.info("visit %s deleted", visit_id)
    return jsonify({"success": True})


@bp.route("/export.csv", methods=["GET"])
@login_required
def export_csv():
    """Semicolon CSV of one month, readable by the importer."""
    month = _selected_month()
    visits = sort_visits(visit_store().list_month(current_user.uid, month), "dateDesc")
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";")
    writer.writerow(EXPORT_COLUMNS)
    for visit in reversed(visits):
        writer.writerow(
            [
                visit.visit_date,
                visit.patient_name,
                f"{visit.amount:.2f}",
                f"{visit.percent:g}",
                visit.procedure_name,
                visit.notes,
                f"{visit.doctor_income:.2f}",
            ]
        )
    return Response(
        "\ufeff" + buffer.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=visits-{month}.csv"},
    )


def _write_import_report(report: dict) -> Path:
    report_dir = Path(current_app.config["DATA_ROOT"]) / "import_reports"
    report_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
    owner = secure_filename(current_user.uid) or "owner"
    report_path = report_dir / f"visit-import-{timestamp}-{owner}.json"
    report_path.write_text(json.dumps(report, indent=2, ensure_ascii=False), encoding="utf-8")
    return report_path


@bp.route("/import", methods=["POST"])
@login_required
@limiter.limit("10 per minute", methods=["POST"])
def import_visits():
    """Upload a CSV/JSON file; dry run unless ``apply`` is set."""
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return _error(["file_required"])

    input_format = (request.form.get("format") or "auto").lower()
    delimiter = (request.form.get("delimiter") or "auto").lower()
    if input_format not in FORMAT_CHOICES:
        return _error(["invalid_format"])
    if delimiter != "auto" and delimiter not in DELIMITERS:
        return _error(["invalid_delimiter"])
    try:
        year = int(request.form.get("year") or datetime.now().year)
    except ValueError:
        return _error(["invalid_year"])
    if not 2000 <= year <= 2100:
        return _error(["invalid_year"])
    apply = (request.form.get("apply") or "").lower() in {"1", "true", "yes", "on"}

    options = ImportOptions(
        uid=current_user.uid,
        input_format=input_format,
        delimiter=delimiter,
        default_procedure=current_app.config["DEFAULT_PROCEDURE"],
        default_year=year,
    )
    batch_size = current_app.config["IMPORT_BATCH_SIZE"]
    try:
        raw_text = upload.read().decode("utf-8")
        outcome = parse_visits(raw_text, options, path=upload.filename)
    except UnicodeDecodeError:
        return _error(["file_must_be_utf8"])
    except ImportFatalError as exc:
        return _error([str(exc)])

    summary = summarize(outcome, batch_size)
    created = 0
    errors = []
    if apply and outcome.drafts:
        store = visit_store()
        try:
            created = write_drafts(store, outcome.drafts, batch_size).created
        except BatchCommitError as exc:
            record_exception("visits.import", exc)
            created = exc.written
            errors.append("partial_import")

    report = {
        "file": upload.filename,
        "applied": apply,
        "created": created,
        "summary": summary.to_dict(),
        "warnings": list(outcome.warnings),
        "preview": [draft_preview(d) for d in summary.preview],
    }
    report_path = _write_import_report(report)
    current_app.logger.info(
        "visit import %s: %d rows, %d warnings, %d created (report %s)",
        upload.filename,
        summary.rows,
        summary.warnings,
        created,
        report_path.name,
    )
    if errors:
        return jsonify({"success": False, "errors": errors, **report}), 500
    return jsonify({"success": True, **report})
