"""Locale keyword tables used by the visit import heuristics.

Header detection, column mapping, meta-row skipping, month names and the
"surgery" hint are all driven from these tables. Adding a language means adding
a ``LocaleKeywords`` entry to ``LOCALES``; the parsers never branch on a
specific language.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

# Column-map order matters: the first field whose keywords match a header cell
# claims that cell.
COLUMN_FIELDS: Tuple[str, ...] = (
    "date",
    "patient_name",
    "amount",
    "percent_or_income",
    "procedure_name",
    "notes",
)

POSITIONAL_COLUMNS: Dict[str, int] = {
    "date": 0,
    "patient_name": 1,
    "amount": 2,
    "percent_or_income": 3,
}


@dataclass(frozen=True)
class FieldKeywords:
    """Substrings (``contains``) or whole cells (``equals``) naming a column."""

    contains: Tuple[str, ...] = ()
    equals: Tuple[str, ...] = ()

    def matches(self, cell: str) -> bool:
        if cell in self.equals:
            return True
        return any(k in cell for k in self.contains)


@dataclass(frozen=True)
class LocaleKeywords:
    code: str
    columns: Dict[str, FieldKeywords]
    # A header row must contain one keyword from every group.
    header_groups: Tuple[Tuple[str, ...], ...]
    meta_equals: Tuple[str, ...]
    meta_prefixes: Tuple[str, ...]
    months: Dict[int, Tuple[str, ...]]
    surgery_keywords: Tuple[str, ...]
    surgery_procedure: str
    alphabet: str = ""


UK = LocaleKeywords(
    code="uk",
    columns={
        "date": FieldKeywords(contains=("дата",)),
        "patient_name": FieldKeywords(contains=("піб", "пацієнт")),
        "amount": FieldKeywords(contains=("сума",)),
        "percent_or_income": FieldKeywords(
            contains=("відсот", "процент", "дохід"), equals=("%",)
        ),
        "procedure_name": FieldKeywords(contains=("послуга", "процедур")),
        "notes": FieldKeywords(contains=("приміт", "коментар")),
    },
    header_groups=(("дата",), ("піб", "пацієн"), ("сума",)),
    meta_equals=("піб", "дата", "сума"),
    meta_prefixes=("зараховано", "всього", "итого", "разом"),
    months={
        1: ("січ", "січень", "січня"),
        2: ("лют", "лютий", "лютого"),
        3: ("бер", "берез", "березень", "березня"),
        4: ("квіт", "квітень", "квітня"),
        5: ("трав", "травень", "травня"),
        6: ("черв", "червень", "червня"),
        7: ("лип", "липень", "липня"),
        8: ("серп", "серпень", "серпня"),
        9: ("вер", "верес", "вересень", "вересня"),
        10: ("жовт", "жовтень", "жовтня"),
        11: ("лист", "листопад", "листопада"),
        12: ("груд", "грудень", "грудня"),
    },
    surgery_keywords=("операц",),
    surgery_procedure="Операція",
    alphabet="абвгґдеєжзиіїйклмнопрстуфхцчшщьюя",
)

EN = LocaleKeywords(
    code="en",
    columns={
        "date": FieldKeywords(equals=("date", "visit date"), contains=("date",)),
        "patient_name": FieldKeywords(contains=("patient", "full name")),
        "amount": FieldKeywords(contains=("amount",)),
        "percent_or_income": FieldKeywords(contains=("percent", "income")),
        "procedure_name": FieldKeywords(contains=("procedure", "service")),
        "notes": FieldKeywords(contains=("note", "comment")),
    },
    header_groups=(("date",), ("full name", "patient"), ("amount",)),
    meta_equals=("full name", "patient", "date", "amount"),
    meta_prefixes=("total", "credited", "grand total"),
    months={
        1: ("jan", "january"),
        2: ("feb", "february"),
        3: ("mar", "march"),
        4: ("apr", "april"),
        5: ("may",),
        6: ("jun", "june"),
        7: ("jul", "july"),
        8: ("aug", "august"),
        9: ("sep", "sept", "september"),
        10: ("oct", "october"),
        11: ("nov", "november"),
        12: ("dec", "december"),
    },
    surgery_keywords=("surgery", "operation"),
    surgery_procedure="Surgery",
    alphabet="abcdefghijklmnopqrstuvwxyz",
)

LOCALES: Tuple[LocaleKeywords, ...] = (UK, EN)


def month_aliases() -> Dict[str, int]:
    """Flatten every locale's month names into one lookup."""
    aliases: Dict[str, int] = {}
    for locale in LOCALES:
        for number, names in locale.months.items():
            for name in names:
                aliases.setdefault(name, number)
    return aliases


MONTH_ALIASES: Dict[str, int] = month_aliases()
