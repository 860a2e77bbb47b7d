"""Pure aggregation helpers for the visits ledger and dashboard.

Nothing here touches storage or mutates its inputs; the route layer feeds in
lists of ``Visit`` records and renders whatever comes back.
"""

from __future__ import annotations

import calendar
import math
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from visit_ledger.models import Visit
from visit_ledger.services.field_parsers import round2
from visit_ledger.services.import_locales import EN, UK

TOP_DAYS_LIMIT = 5

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")

_LATIN_ORDER = {ch: i for i, ch in enumerate(EN.alphabet)}
_CYRILLIC_ORDER = {ch: i for i, ch in enumerate(UK.alphabet)}


class VisitsSort(str, Enum):
    DATE_DESC = "dateDesc"
    INCOME_DESC = "incomeDesc"
    AMOUNT_DESC = "amountDesc"
    PATIENT_ASC = "patientAsc"

    @classmethod
    def parse(cls, value: Optional[str]) -> "VisitsSort":
        for member in cls:
            if member.value == value:
                return member
        return cls.DATE_DESC


@dataclass(frozen=True)
class MonthlySummary:
    total_amount: float = 0.0
    total_income: float = 0.0
    total_visits: int = 0
    unique_patients: int = 0
    average_check: float = 0.0
    average_percent: float = 0.0


@dataclass(frozen=True)
class DailyInsight:
    visit_date: str
    income: float
    visits: int


@dataclass(frozen=True)
class Trends:
    amount: Optional[int] = None
    income: Optional[int] = None
    visits: Optional[int] = None


@dataclass(frozen=True)
class DashboardVm:
    visits: List[Visit]
    summary: MonthlySummary
    top_days: List[DailyInsight]
    trends: Trends = field(default_factory=Trends)

    def to_dict(self) -> dict:
        return {
            "visits": [visit.to_dict() for visit in self.visits],
            "summary": self.summary.__dict__.copy(),
            "top_days": [day.__dict__.copy() for day in self.top_days],
            "trends": self.trends.__dict__.copy(),
        }


def calculate_income(amount: float, percent: float) -> float:
    """Doctor income for one visit; 0 when either input is not finite."""
    try:
        amount = float(amount)
        percent = float(percent)
    except (TypeError, ValueError):
        return 0.0
    if not (math.isfinite(amount) and math.isfinite(percent)):
        return 0.0
    return round2(amount * percent / 100)


def summarize_visits(visits: Sequence[Visit]) -> MonthlySummary:
    total_visits = len(visits)
    if not total_visits:
        return MonthlySummary()
    total_amount = round2(sum(v.amount for v in visits))
    total_income = round2(sum(v.doctor_income for v in visits))
    patients = {v.patient_name.strip().lower() for v in visits if v.patient_name.strip()}
    return MonthlySummary(
        total_amount=total_amount,
        total_income=total_income,
        total_visits=total_visits,
        unique_patients=len(patients),
        average_check=round2(total_amount / total_visits),
        average_percent=round2(sum(v.percent for v in visits) / total_visits),
    )


def top_days(visits: Iterable[Visit], limit: int = TOP_DAYS_LIMIT) -> List[DailyInsight]:
    """Busiest days by income. Equal incomes keep first-seen date order."""
    grouped: Dict[str, Tuple[float, int]] = {}
    for visit in visits:
        income, count = grouped.get(visit.visit_date, (0.0, 0))
        grouped[visit.visit_date] = (income + visit.doctor_income, count + 1)
    days = [DailyInsight(day, round2(income), count) for day, (income, count) in grouped.items()]
    days.sort(key=lambda d: d.income, reverse=True)
    return days[:limit]


def trend_percent(current: float, previous: Optional[float]) -> Optional[int]:
    if previous is None or previous == 0:
        return None
    return int(math.floor((current - previous) / previous * 100 + 0.5))


def build_trends(summary: MonthlySummary, previous: Optional[MonthlySummary]) -> Trends:
    if previous is None:
        return Trends()
    return Trends(
        amount=trend_percent(summary.total_amount, previous.total_amount),
        income=trend_percent(summary.total_income, previous.total_income),
        visits=trend_percent(summary.total_visits, previous.total_visits),
    )


def build_dashboard_vm(
    visits: Sequence[Visit], previous: Optional[Sequence[Visit]] = None
) -> DashboardVm:
    summary = summarize_visits(visits)
    previous_summary = summarize_visits(previous) if previous else None
    return DashboardVm(
        visits=list(visits),
        summary=summary,
        top_days=top_days(visits),
        trends=build_trends(summary, previous_summary),
    )


def filter_visits(visits: List[Visit], query: Optional[str]) -> List[Visit]:
    needle = (query or "").strip().lower()
    if not needle:
        return visits
    return [
        v
        for v in visits
        if needle in " ".join((v.patient_name, v.procedure_name, v.notes or "", v.visit_date)).lower()
    ]


def collation_key(name: str) -> Tuple[Tuple[int, int], ...]:
    """Sort key placing Cyrillic before Latin, each in its own alphabet order.

    Ukrainian letters such as ``ґ``, ``є``, ``і``, ``ї`` sit where the
    Ukrainian alphabet puts them rather than at their code point.
    """
    key = []
    for ch in (name or "").strip().lower():
        if ch in _CYRILLIC_ORDER:
            key.append((1, _CYRILLIC_ORDER[ch]))
        elif ch in _LATIN_ORDER:
            key.append((2, _LATIN_ORDER[ch]))
        elif ch.isalpha():
            key.append((3, ord(ch)))
        else:
            key.append((0, ord(ch)))
    return tuple(key)


def sort_visits(visits: Sequence[Visit], order: VisitsSort | str) -> List[Visit]:
    order = order if isinstance(order, VisitsSort) else VisitsSort.parse(order)
    if order is VisitsSort.INCOME_DESC:
        return sorted(visits, key=lambda v: v.doctor_income, reverse=True)
    if order is VisitsSort.AMOUNT_DESC:
        return sorted(visits, key=lambda v: v.amount, reverse=True)
    if order is VisitsSort.PATIENT_ASC:
        return sorted(visits, key=lambda v: collation_key(v.patient_name))
    return sorted(visits, key=lambda v: (v.visit_date, v.created_at or ""), reverse=True)


def _parse_month(month: Optional[str]) -> Optional[Tuple[int, int]]:
    m = _MONTH_RE.match((month or "").strip())
    if not m:
        return None
    year, mon = int(m.group(1)), int(m.group(2))
    if not 1 <= mon <= 12:
        return None
    return year, mon


def current_month(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{today.year:04d}-{today.month:02d}"


def add_months(month: str, delta: int, fallback: str) -> str:
    parsed = _parse_month(month)
    if parsed is None:
        return fallback
    year, mon = parsed
    index = year * 12 + (mon - 1) + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def month_bounds(month: str, fallback: str) -> Tuple[str, str]:
    """First and last ISO day of ``month`` (or of ``fallback`` if malformed)."""
    parsed = _parse_month(month) or _parse_month(fallback)
    if parsed is None:
        raise ValueError(f"Invalid month: {month!r}")
    year, mon = parsed
    last_day = calendar.monthrange(year, mon)[1]
    return date(year, mon, 1).isoformat(), date(year, mon, last_day).isoformat()


def build_calendar(visits: Iterable[Visit], month: str) -> List[List[dict]]:
    """Monday-first weeks covering ``month``; padding days have ``in_month`` False."""
    start_iso, end_iso = month_bounds(month, current_month())
    first = date.fromisoformat(start_iso)
    last = date.fromisoformat(end_iso)

    per_day: Dict[str, List[Visit]] = {}
    for visit in visits:
        per_day.setdefault(visit.visit_date, []).append(visit)

    cursor = first - timedelta(days=first.weekday())
    stop = last + timedelta(days=6 - last.weekday())
    weeks: List[List[dict]] = []
    while cursor <= stop:
        week = []
        for _ in range(7):
            iso = cursor.isoformat()
            day_visits = per_day.get(iso, [])
            week.append(
                {
                    "date": iso,
                    "in_month": first <= cursor <= last,
                    "visits": len(day_visits),
                    "income": round2(sum(v.doctor_income for v in day_visits)),
                    "amount": round2(sum(v.amount for v in day_visits)),
                }
            )
            cursor += timedelta(days=1)
        weeks.append(week)
    return weeks
