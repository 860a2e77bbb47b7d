"""Structured (JSON) visit import, mostly used to re-import an export."""

from __future__ import annotations

import json
from typing import Any, List, Tuple

from visit_ledger.services.field_parsers import (
    clean_patient_name,
    normalize_uid,
    parse_date,
    parse_datetime,
    parse_number,
    percent_in_range,
    pick_procedure,
    round2,
)
from visit_ledger.services.import_types import (
    ImportFatalError,
    ImportOptions,
    ImportOutcome,
    InputFormat,
    VisitDraft,
)


def load_json_rows(raw_text: str) -> List[Any]:
    """Return the list of row objects, or raise ``ImportFatalError``.

    Accepts a bare array or ``{"visits": [...]}``.
    """
    text = raw_text[1:] if raw_text.startswith("\ufeff") else raw_text
    try:
        root = json.loads(text.strip())
    except ValueError as exc:
        raise ImportFatalError(f"Invalid JSON: {exc}") from exc

    if isinstance(root, list):
        return root
    if isinstance(root, dict) and isinstance(root.get("visits"), list):
        return root["visits"]
    raise ImportFatalError('JSON root must be an array, or an object with "visits" array.')


def _shown(value: Any) -> str:
    return "" if value is None else str(value)


def _timestamp(row: dict, key: str) -> Tuple[Any, bool]:
    """Return ``(parsed_or_None, fell_back)`` for an optional timestamp field."""
    raw = row.get(key)
    if raw is None or _shown(raw).strip() == "":
        return None, False
    parsed = parse_datetime(raw)
    return parsed, parsed is None


def normalize_json_row(row: Any, row_number: int, options: ImportOptions) -> Tuple[Any, int]:
    """Return ``(draft_or_warning, timestamp_fallbacks)`` for one element."""
    if not isinstance(row, dict):
        return f"Row {row_number}: invalid object -> skipped.", 0

    owner_uid = normalize_uid(options.uid) or normalize_uid(row.get("ownerUid"))
    if not owner_uid:
        return f"Row {row_number}: missing ownerUid (and no --uid override) -> skipped.", 0

    raw_name = _shown(row.get("patientName"))
    patient_name = clean_patient_name(raw_name)
    if not patient_name:
        return f"Row {row_number}: empty patientName -> skipped.", 0

    visit_date = parse_date(row.get("visitDate"), options.default_year)
    if not visit_date:
        return f'Row {row_number}: invalid visitDate "{_shown(row.get("visitDate"))}" -> skipped.', 0

    amount = parse_number(row.get("amount"))
    if amount is None or amount <= 0:
        return f'Row {row_number}: invalid amount "{_shown(row.get("amount"))}" -> skipped.', 0

    raw_percent = parse_number(row.get("percent"))
    raw_income = parse_number(row.get("doctorIncome"))
    if raw_percent is None and raw_income is None:
        return f"Row {row_number}: both percent and doctorIncome are missing -> skipped.", 0

    percent = raw_percent if raw_percent is not None else round2(raw_income / amount * 100)
    if not percent_in_range(percent):
        return f'Row {row_number}: percent "{percent:g}" out of range -> skipped.', 0

    percent = round2(percent)
    doctor_income = round2(raw_income) if raw_income is not None else round2(amount * percent / 100)

    created_at, created_fallback = _timestamp(row, "createdAt")
    updated_at, updated_fallback = _timestamp(row, "updatedAt")

    draft = VisitDraft(
        owner_uid=owner_uid,
        visit_date=visit_date,
        patient_name=patient_name,
        procedure_name=pick_procedure(raw_name, row.get("procedureName"), options.default_procedure),
        amount=round2(amount),
        percent=percent,
        doctor_income=doctor_income,
        notes=_shown(row.get("notes")).strip(),
        created_at=created_at,
        updated_at=updated_at,
    )
    return draft, int(created_fallback) + int(updated_fallback)


def parse_json_visits(raw_text: str, options: ImportOptions) -> ImportOutcome:
    rows = load_json_rows(raw_text)
    results = [normalize_json_row(row, number, options) for number, row in enumerate(rows, start=1)]
    return ImportOutcome(
        input_format=InputFormat.JSON,
        drafts=tuple(r for r, _ in results if isinstance(r, VisitDraft)),
        warnings=tuple(r for r, _ in results if not isinstance(r, VisitDraft)),
        timestamp_fallbacks=sum(fallbacks for _, fallbacks in results),
    )
