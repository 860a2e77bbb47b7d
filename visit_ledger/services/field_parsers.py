"""Field-level parsers used by the visit import pipelines.

All helpers are pure and never raise on malformed input: they return ``None``
(or an empty string for text cleaners) so the row normalizer can turn the
problem into a per-row warning.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any, Optional

from visit_ledger.services.import_locales import LOCALES, MONTH_ALIASES

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_NUMERIC_DATE_RE = re.compile(r"^(\d{1,2})[./-](\d{1,2})(?:[./-](\d{4}|\d{2}))?$")
_TOKEN_DATE_RE = re.compile(
    r"^(\d{1,2})\s*[-\s]\s*([a-zа-яіїєґ.]+)(?:\s*[-\s,]?\s*(\d{4}))?$",
    re.IGNORECASE,
)

_SURGERY_KEYWORDS = tuple(k for locale in LOCALES for k in locale.surgery_keywords)
_SURGERY_ALT = "|".join(re.escape(k) for k in _SURGERY_KEYWORDS)
_SURGERY_NOTE_RE = re.compile(rf"\s*\(([^)]*(?:{_SURGERY_ALT})[^)]*)\)\s*", re.IGNORECASE)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def round2(value: float) -> float:
    """Round half-up to two decimals (``Math.round`` semantics, not banker's)."""
    return math.floor(value * 100 + 0.5) / 100


def parse_number(raw: Any) -> Optional[float]:
    """Parse amounts written as ``1 150``, ``1150,50`` or ``1150.5 грн``.

    Only the first comma is treated as the decimal separator; anything other
    than digits, dot and minus is dropped afterwards.
    """
    if isinstance(raw, bool):
        return None
    txt = _text(raw).replace("\u00a0", " ").strip()
    txt = re.sub(r"\s+", "", txt)
    txt = txt.replace(",", ".", 1)
    txt = re.sub(r"[^\d.-]", "", txt)
    if not txt:
        return None
    try:
        value = float(txt)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def to_iso_date(year: int, month: int, day: int) -> Optional[str]:
    """Return ``YYYY-MM-DD`` only if the parts form a real calendar date."""
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_month_token(value: str) -> str:
    lowered = value.lower().replace(".", "")
    return "".join(ch for ch in lowered if ch.isalpha())


def resolve_month(token: str) -> Optional[int]:
    return MONTH_ALIASES.get(normalize_month_token(token))


def parse_date(raw: Any, default_year: int) -> Optional[str]:
    """Parse a visit date cell into ISO form.

    Accepted shapes:
      * ``2026-02-19`` (ISO)
      * ``19.02.2026``, ``19/02/26``, ``19-02`` (day first, year optional)
      * ``19 лют 2026``, ``19-feb`` (month name in any supported locale)
    """
    value = _text(raw).strip()
    if not value:
        return None

    m = _ISO_DATE_RE.match(value)
    if m:
        return to_iso_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _NUMERIC_DATE_RE.match(value)
    if m:
        day, month = int(m.group(1)), int(m.group(2))
        year_raw = m.group(3)
        if year_raw:
            year = int(f"20{year_raw}") if len(year_raw) == 2 else int(year_raw)
        else:
            year = default_year
        return to_iso_date(year, month, day)

    m = _TOKEN_DATE_RE.match(value)
    if m:
        month = resolve_month(m.group(2))
        if not month:
            return None
        year = int(m.group(3)) if m.group(3) else default_year
        return to_iso_date(year, month, int(m.group(1)))

    return None


def parse_datetime(raw: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are read as UTC."""
    value = _text(raw).strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def derive_percent(value: float, amount: float) -> float:
    """Interpret the "%" column.

    Values up to 100 are a percent. Anything larger is the doctor's income for
    the visit, so the percent is back-derived from the amount.
    """
    if value > 100:
        return round2(value / amount * 100)
    return round2(value)


def percent_in_range(percent: Optional[float]) -> bool:
    return percent is not None and math.isfinite(percent) and 0 <= percent <= 100


def surgery_procedure_for(text: str) -> Optional[str]:
    lowered = (text or "").lower()
    for locale in LOCALES:
        for keyword in locale.surgery_keywords:
            if re.search(rf"\b{re.escape(keyword)}", lowered):
                return locale.surgery_procedure
    return None


def clean_patient_name(raw: Any) -> str:
    """Drop "(операція ...)" style annotations and collapse whitespace."""
    txt = _SURGERY_NOTE_RE.sub(" ", _text(raw))
    return re.sub(r"\s+", " ", txt).strip()


def pick_procedure(patient_name: str, raw_procedure: Any, fallback: str) -> str:
    """Explicit procedure wins; a surgery hint in the name beats the fallback.

    Pass the *raw* name here: the hint usually sits in the parenthetical
    annotation that ``clean_patient_name`` removes.
    """
    procedure = _text(raw_procedure).strip()
    if procedure:
        return procedure
    return surgery_procedure_for(patient_name) or fallback


def normalize_uid(raw: Any) -> Optional[str]:
    uid = _text(raw).strip()
    return uid or None
