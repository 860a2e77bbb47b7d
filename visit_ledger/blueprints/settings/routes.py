"""Per-owner settings API."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from visit_ledger.extensions import csrf
from visit_ledger.services.database import engine
from visit_ledger.services.errors import record_exception
from visit_ledger.services.user_settings import SettingsError, get_settings, save_settings

bp = Blueprint("settings", __name__, url_prefix="/settings")
csrf.exempt(bp)


@bp.route("/", methods=["GET"])
@login_required
def show():
    settings = get_settings(engine(), current_user.uid)
    return jsonify({"success": True, "settings": settings.to_dict()})


@bp.route("/", methods=["POST"])
@login_required
def update():
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        return jsonify({"success": False, "errors": ["invalid_request"]}), 400
    try:
        settings = save_settings(engine(), current_user.uid, data)
    except SettingsError as exc:
        return jsonify({"success": False, "errors": [str(exc)]}), 400
    except Exception as exc:
        record_exception("settings.update", exc)
        return jsonify({"success": False, "errors": ["internal_error"]}), 500
    current_app.logger.info("settings saved for %s", current_user.uid)
    return jsonify({"success": True, "settings": settings.to_dict()})
