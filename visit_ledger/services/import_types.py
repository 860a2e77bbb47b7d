"""Value types shared by the visit import pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

DEFAULT_PROCEDURE = "Консультація"

DELIMITERS = {
    "comma": ",",
    "semicolon": ";",
    "tab": "\t",
}


class InputFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


class ImportFatalError(Exception):
    """Problem that aborts the whole import (as opposed to a skipped row)."""


@dataclass(frozen=True)
class VisitDraft:
    """Normalized visit that has not been written yet."""

    owner_uid: Optional[str]
    visit_date: str
    patient_name: str
    procedure_name: str
    amount: float
    percent: float
    doctor_income: float
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ImportOptions:
    uid: Optional[str] = None
    input_format: str = "auto"
    delimiter: str = "auto"
    default_procedure: str = DEFAULT_PROCEDURE
    default_year: int = field(default_factory=lambda: datetime.now().year)


@dataclass(frozen=True)
class ParseContext:
    default_year: int
    default_procedure: str = DEFAULT_PROCEDURE
    current_date: Optional[str] = None
    owner_uid: Optional[str] = None

    @classmethod
    def from_options(cls, options: ImportOptions) -> "ParseContext":
        return cls(
            default_year=options.default_year,
            default_procedure=options.default_procedure,
            owner_uid=options.uid or None,
        )

    def with_date(self, visit_date: str) -> "ParseContext":
        return replace(self, current_date=visit_date)


@dataclass(frozen=True)
class ColumnMap:
    date: int
    patient_name: int
    amount: int
    percent_or_income: int
    procedure_name: int = -1
    notes: int = -1


@dataclass(frozen=True)
class ImportOutcome:
    input_format: InputFormat
    drafts: Tuple[VisitDraft, ...] = ()
    warnings: Tuple[str, ...] = ()
    delimiter: Optional[str] = None
    has_header: bool = False
    timestamp_fallbacks: int = 0
