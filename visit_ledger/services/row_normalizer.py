"""Turn one tabular row into a visit draft, a warning, or a silent skip."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from visit_ledger.services.field_parsers import (
    clean_patient_name,
    derive_percent,
    parse_date,
    parse_number,
    percent_in_range,
    pick_procedure,
    round2,
)
from visit_ledger.services.import_locales import LOCALES
from visit_ledger.services.import_types import ColumnMap, ParseContext, VisitDraft

_META_EQUALS = frozenset(label for locale in LOCALES for label in locale.meta_equals)
_META_PREFIXES = tuple(prefix for locale in LOCALES for prefix in locale.meta_prefixes)


@dataclass(frozen=True)
class RowResult:
    """Outcome of a single row plus the context to carry into the next one.

    ``draft`` and ``warning`` are mutually exclusive; both ``None`` means the
    row was skipped without comment (blank or summary rows).
    """

    context: ParseContext
    draft: Optional[VisitDraft] = None
    warning: Optional[str] = None


def is_meta_row_name(value: str) -> bool:
    """True for repeated header labels and "total"/"credited" summary lines."""
    normalized = (value or "").strip().lower()
    if not normalized:
        return False
    return normalized in _META_EQUALS or normalized.startswith(_META_PREFIXES)


def _cell(cells: Sequence[str], index: int) -> str:
    if index < 0 or index >= len(cells):
        return ""
    return (cells[index] or "").strip()


def normalize_row(
    cells: Sequence[str],
    columns: ColumnMap,
    context: ParseContext,
    line_number: int,
) -> RowResult:
    raw_name = _cell(cells, columns.patient_name)
    if not raw_name or is_meta_row_name(raw_name):
        return RowResult(context)

    raw_date = _cell(cells, columns.date)
    if raw_date:
        visit_date = parse_date(raw_date, context.default_year)
        if not visit_date:
            return RowResult(context, warning=f'Line {line_number}: invalid date "{raw_date}" -> skipped.')
        context = context.with_date(visit_date)

    if not context.current_date:
        return RowResult(
            context,
            warning=f"Line {line_number}: missing date (and no previous date to reuse) -> skipped.",
        )

    raw_amount = _cell(cells, columns.amount)
    amount = parse_number(raw_amount)
    if amount is None or amount <= 0:
        return RowResult(context, warning=f'Line {line_number}: invalid amount "{raw_amount}" -> skipped.')

    raw_share = _cell(cells, columns.percent_or_income)
    share = parse_number(raw_share)
    if share is None or share < 0:
        return RowResult(context, warning=f'Line {line_number}: invalid %/income "{raw_share}" -> skipped.')

    percent = derive_percent(share, amount)
    if not percent_in_range(percent):
        return RowResult(
            context,
            warning=f'Line {line_number}: derived percent "{percent:g}" from "{raw_share}" out of range -> skipped.',
        )

    patient_name = clean_patient_name(raw_name)
    if not patient_name:
        return RowResult(
            context,
            warning=f'Line {line_number}: empty patient name after normalization "{raw_name}" -> skipped.',
        )

    amount = round2(amount)
    draft = VisitDraft(
        owner_uid=context.owner_uid,
        visit_date=context.current_date,
        patient_name=patient_name,
        procedure_name=pick_procedure(raw_name, _cell(cells, columns.procedure_name), context.default_procedure),
        amount=amount,
        percent=percent,
        doctor_income=round2(amount * percent / 100),
        notes=_cell(cells, columns.notes),
    )
    return RowResult(context, draft=draft)
