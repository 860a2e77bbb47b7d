"""Entry point for visit imports: format dispatch, file reading, summaries."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from visit_ledger.services.batch_writer import DEFAULT_BATCH_SIZE, planned_batches
from visit_ledger.services.csv_import import parse_csv_visits
from visit_ledger.services.field_parsers import round2
from visit_ledger.services.import_types import (
    ImportFatalError,
    ImportOptions,
    ImportOutcome,
    InputFormat,
    VisitDraft,
)
from visit_ledger.services.json_import import parse_json_visits

FORMAT_CHOICES = ("auto", "csv", "json")
PREVIEW_ROWS = 5


def detect_input_format(path: Optional[str], raw_text: str, selected: str = "auto") -> InputFormat:
    """Resolve the input format once, before any parsing happens."""
    if selected == "csv":
        return InputFormat.CSV
    if selected == "json":
        return InputFormat.JSON
    if selected != "auto":
        raise ImportFatalError("Invalid format. Use auto|csv|json.")

    suffix = Path(path).suffix.lower() if path else ""
    if suffix == ".json":
        return InputFormat.JSON
    if suffix in (".csv", ".tsv"):
        return InputFormat.CSV

    text = raw_text.lstrip("\ufeff").strip()
    if text[:1] in ("[", "{"):
        try:
            json.loads(text)
        except ValueError:
            return InputFormat.CSV
        return InputFormat.JSON
    return InputFormat.CSV


def read_import_file(path: str) -> str:
    file_path = Path(path)
    if not file_path.is_file():
        raise ImportFatalError(f"File not found: {path}")
    try:
        return file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ImportFatalError(f"Cannot read {path}: {exc}") from exc


def parse_visits(raw_text: str, options: ImportOptions, path: Optional[str] = None) -> ImportOutcome:
    input_format = detect_input_format(path, raw_text, options.input_format)
    if input_format is InputFormat.CSV:
        if not options.uid:
            raise ImportFatalError("For CSV input provide --uid (JSON rows can carry ownerUid directly).")
        return parse_csv_visits(raw_text, options)
    return parse_json_visits(raw_text, options)


@dataclass(frozen=True)
class ImportSummary:
    input_format: InputFormat
    rows: int
    warnings: int
    total_amount: float
    total_income: float
    owner_uids: Tuple[str, ...]
    batches: int
    delimiter: Optional[str] = None
    has_header: bool = False
    timestamp_fallbacks: int = 0
    preview: List[VisitDraft] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "format": self.input_format.value,
            "rows": self.rows,
            "warnings": self.warnings,
            "total_amount": self.total_amount,
            "total_income": self.total_income,
            "owner_uids": list(self.owner_uids),
            "batches": self.batches,
            "delimiter": self.delimiter,
            "has_header": self.has_header,
            "timestamp_fallbacks": self.timestamp_fallbacks,
        }


def summarize(outcome: ImportOutcome, batch_size: int = DEFAULT_BATCH_SIZE) -> ImportSummary:
    """Statistics shown before anything is written, identical for dry runs."""
    drafts = outcome.drafts
    return ImportSummary(
        input_format=outcome.input_format,
        rows=len(drafts),
        warnings=len(outcome.warnings),
        total_amount=round2(sum(d.amount for d in drafts)),
        total_income=round2(sum(d.doctor_income for d in drafts)),
        owner_uids=tuple(sorted({d.owner_uid for d in drafts if d.owner_uid})),
        batches=planned_batches(len(drafts), batch_size),
        delimiter=outcome.delimiter,
        has_header=outcome.has_header,
        timestamp_fallbacks=outcome.timestamp_fallbacks,
        preview=list(drafts[:PREVIEW_ROWS]),
    )


def draft_preview(draft: VisitDraft) -> dict:
    return {
        "ownerUid": draft.owner_uid,
        "visitDate": draft.visit_date,
        "patientName": draft.patient_name,
        "procedureName": draft.procedure_name,
        "amount": draft.amount,
        "percent": draft.percent,
        "doctorIncome": draft.doctor_income,
        "notes": draft.notes,
    }
