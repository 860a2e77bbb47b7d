"""Tabular (CSV/TSV) visit import.

Spreadsheet exports from the clinic journal are messy: the delimiter depends
on the Excel locale, the header row is optional, dates are filled in only on
the first row of a day, and the sheet ends with "Разом"/"Total" lines. This
module turns such text into an ``ImportOutcome`` without touching storage.
"""

from __future__ import annotations

import csv
import re
from itertools import accumulate, islice
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from visit_ledger.services.import_locales import COLUMN_FIELDS, LOCALES, POSITIONAL_COLUMNS
from visit_ledger.services.import_types import (
    DELIMITERS,
    ColumnMap,
    ImportFatalError,
    ImportOptions,
    ImportOutcome,
    InputFormat,
    ParseContext,
)
from visit_ledger.services.row_normalizer import RowResult, normalize_row

DELIMITER_SAMPLE_LINES = 8
DEFAULT_DELIMITER = "semicolon"


def numbered_lines(raw_text: str) -> List[Tuple[int, str]]:
    """Strip a BOM, split on CR/LF and drop blank lines.

    Each kept line is paired with its 1-based position in the source file so
    warnings point at the line the operator sees in an editor.
    """
    text = raw_text[1:] if raw_text.startswith("\ufeff") else raw_text
    lines = [line.rstrip() for line in re.split(r"\r?\n", text)]
    return [(number, line) for number, line in enumerate(lines, start=1) if line.strip()]


def parse_csv_line(line: str, delimiter: str) -> List[str]:
    """Split one line with standard CSV quoting (``""`` is a literal quote)."""
    try:
        rows = list(csv.reader([line], delimiter=delimiter, quotechar='"'))
    except csv.Error:
        return line.split(delimiter)
    return rows[0] if rows else [""]


def detect_delimiter(lines: Sequence[str]) -> str:
    """Pick the delimiter that yields the most fields on the first lines.

    Single-field parses do not count, so a stray comma in a semicolon file
    cannot win. Semicolon is the default when nothing splits.
    """
    best = DEFAULT_DELIMITER
    best_score = -1.0
    for name, value in DELIMITERS.items():
        lengths = [len(parse_csv_line(line, value)) for line in lines[:DELIMITER_SAMPLE_LINES]]
        lengths = [n for n in lengths if n > 1]
        if not lengths:
            continue
        score = sum(lengths) / len(lengths)
        if score > best_score:
            best, best_score = name, score
    return best


def normalize_header(value: str) -> str:
    txt = (value or "").lower().replace("\u00a0", " ")
    txt = re.sub(r"[_.]", " ", txt)
    return re.sub(r"\s+", " ", txt).strip()


def looks_like_header(cells: Sequence[str]) -> bool:
    joined = "|".join(normalize_header(cell) for cell in cells)
    for locale in LOCALES:
        if all(any(k in joined for k in group) for group in locale.header_groups):
            return True
    return False


def resolve_column_map(header_cells: Sequence[str]) -> ColumnMap:
    """Map header cells to fields by keyword, falling back to fixed positions."""
    found: Dict[str, int] = {}
    for index, raw in enumerate(header_cells):
        cell = normalize_header(raw)
        if not cell:
            continue
        for field_name in COLUMN_FIELDS:
            if field_name in found:
                continue
            if any(locale.columns[field_name].matches(cell) for locale in LOCALES):
                found[field_name] = index
                break
    for field_name, position in POSITIONAL_COLUMNS.items():
        found.setdefault(field_name, position)
    return ColumnMap(
        date=found["date"],
        patient_name=found["patient_name"],
        amount=found["amount"],
        percent_or_income=found["percent_or_income"],
        procedure_name=found.get("procedure_name", -1),
        notes=found.get("notes", -1),
    )


def fold_rows(
    numbered: Iterable[Tuple[int, List[str]]], columns: ColumnMap, context: ParseContext
) -> Iterator[RowResult]:
    """Left fold over the rows that threads the parse context (carried date).

    Yields one ``RowResult`` per input row; repeated header rows yield an
    empty result.
    """

    def step(previous: RowResult, row: Tuple[int, List[str]]) -> RowResult:
        line_number, cells = row
        if looks_like_header(cells):
            return RowResult(previous.context)
        return normalize_row(cells, columns, previous.context, line_number)

    return islice(accumulate(numbered, step, initial=RowResult(context)), 1, None)


def parse_csv_visits(raw_text: str, options: ImportOptions) -> ImportOutcome:
    source = numbered_lines(raw_text)
    if not source:
        raise ImportFatalError("Input file is empty.")

    if options.delimiter == "auto":
        delimiter_name = detect_delimiter([line for _, line in source])
    elif options.delimiter in DELIMITERS:
        delimiter_name = options.delimiter
    else:
        raise ImportFatalError("Invalid delimiter. Use auto|comma|semicolon|tab.")
    delimiter = DELIMITERS[delimiter_name]

    rows = [(number, [cell.strip() for cell in parse_csv_line(line, delimiter)]) for number, line in source]
    has_header = looks_like_header(rows[0][1])
    columns = resolve_column_map(rows[0][1] if has_header else [])
    numbered = rows[1:] if has_header else rows
    results = list(fold_rows(numbered, columns, ParseContext.from_options(options)))

    return ImportOutcome(
        input_format=InputFormat.CSV,
        drafts=tuple(r.draft for r in results if r.draft is not None),
        warnings=tuple(r.warning for r in results if r.warning is not None),
        delimiter=delimiter_name,
        has_header=has_header,
    )
