"""Request identity: the fronting auth proxy passes the owner uid in a header."""

from __future__ import annotations

from flask import jsonify
from flask_login import UserMixin

from visit_ledger.extensions import login_manager
from visit_ledger.services.field_parsers import normalize_uid

OWNER_HEADER = "X-Owner-Uid"


class Owner(UserMixin):
    def __init__(self, uid: str) -> None:
        self.id = uid

    @property
    def uid(self) -> str:
        return self.id


@login_manager.request_loader
def load_owner_from_request(request):
    uid = normalize_uid(request.headers.get(OWNER_HEADER))
    return Owner(uid) if uid else None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"success": False, "errors": ["authentication_required"]}), 401
