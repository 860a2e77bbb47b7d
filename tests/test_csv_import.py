import pytest

from visit_ledger.services.csv_import import (
    detect_delimiter,
    fold_rows,
    looks_like_header,
    numbered_lines,
    parse_csv_line,
    parse_csv_visits,
    resolve_column_map,
)
from visit_ledger.services.import_types import ImportFatalError, ImportOptions, ParseContext


def _options(**overrides):
    values = {"uid": "owner-1", "default_year": 2026}
    values.update(overrides)
    return ImportOptions(**values)


JOURNAL = "\n".join(
    [
        "Дата;ПІБ;Сума;%;Послуга;Примітки",
        "19.02.2026;Іваненко Петро;1150;345;;перший візит",
        ";Коротін Олег;2000;25;Чистка;",
        ";Ґудзь Анна (операція);1000;20;;",
        "Разом;;4150;;;",
    ]
)


def test_detect_delimiter_prefers_semicolon_rows():
    lines = ["19.02.2026;Іваненко;1150;30", "20.02.2026;Коротін;2000;25", "21.02.2026;Ґудзь;1000;20"]
    assert detect_delimiter(lines) == "semicolon"


def test_detect_delimiter_defaults_to_semicolon():
    assert detect_delimiter(["just one cell", "another"]) == "semicolon"


def test_parse_csv_line_handles_quotes():
    assert parse_csv_line('2026-02-19,"Smith, John",1000,"say ""hi"""', ",") == [
        "2026-02-19",
        "Smith, John",
        "1000",
        'say "hi"',
    ]


def test_numbered_lines_keeps_source_positions():
    assert numbered_lines("\ufeffa\r\n\r\nb\n") == [(1, "a"), (3, "b")]


def test_header_detection_and_column_map():
    header = ["Дата", "ПІБ", "Сума", "%", "Послуга", "Примітки"]
    assert looks_like_header(header)
    columns = resolve_column_map(header)
    assert (columns.date, columns.patient_name, columns.amount, columns.percent_or_income) == (0, 1, 2, 3)
    assert (columns.procedure_name, columns.notes) == (4, 5)


def test_column_map_positional_fallback():
    columns = resolve_column_map([])
    assert (columns.date, columns.patient_name, columns.amount, columns.percent_or_income) == (0, 1, 2, 3)
    assert columns.procedure_name == -1
    assert columns.notes == -1


def test_english_header_in_other_order():
    header = ["Amount", "Patient", "Visit date", "Income"]
    assert looks_like_header(header)
    columns = resolve_column_map(header)
    assert (columns.amount, columns.patient_name, columns.date, columns.percent_or_income) == (0, 1, 2, 3)


def test_grouped_journal_rows():
    outcome = parse_csv_visits(JOURNAL, _options())

    assert outcome.delimiter == "semicolon"
    assert outcome.has_header is True
    assert outcome.warnings == ()
    assert [d.visit_date for d in outcome.drafts] == ["2026-02-19"] * 3

    first, second, third = outcome.drafts
    assert (first.percent, first.doctor_income, first.notes) == (30.0, 345.0, "перший візит")
    assert first.procedure_name == "Консультація"
    assert (second.procedure_name, second.doctor_income) == ("Чистка", 500.0)
    assert third.patient_name == "Ґудзь Анна"
    assert third.procedure_name == "Операція"
    assert {d.owner_uid for d in outcome.drafts} == {"owner-1"}


def test_percent_and_income_columns_give_same_draft():
    text = "19.02.2026;Іваненко Петро;1150;345\n19.02.2026;Іваненко Петро;1150;30"
    by_income, by_percent = parse_csv_visits(text, _options()).drafts
    assert (by_income.percent, by_income.doctor_income) == (30.0, 345.0)
    assert (by_percent.percent, by_percent.doctor_income) == (30.0, 345.0)


def test_invalid_date_does_not_replace_carried_date():
    text = "\n".join(
        [
            "19.02.2026;Іваненко Петро;100;10",
            ";Коротін Олег;100;10",
            "31.02.2026;Ґудзь Анна;100;10",
            ";Дмитренко Ольга;100;10",
        ]
    )
    outcome = parse_csv_visits(text, _options())

    assert [d.patient_name for d in outcome.drafts] == ["Іваненко Петро", "Коротін Олег", "Дмитренко Ольга"]
    assert {d.visit_date for d in outcome.drafts} == {"2026-02-19"}
    assert outcome.warnings == ('Line 3: invalid date "31.02.2026" -> skipped.',)


def test_row_warnings_name_line_and_value():
    text = "\n".join(
        [
            ";Без дати;100;10",
            "",
            "19.02.2026;Іваненко Петро;abc;10",
            "19.02.2026;Коротін Олег;100;-5",
            "19.02.2026;Ґудзь Анна;100;150",
            "19.02.2026;(операція);100;10",
            "19.02.2026;Дмитренко Ольга;1000;150",
        ]
    )
    outcome = parse_csv_visits(text, _options())

    assert outcome.warnings == (
        "Line 1: missing date (and no previous date to reuse) -> skipped.",
        'Line 3: invalid amount "abc" -> skipped.',
        'Line 4: invalid %/income "-5" -> skipped.',
        'Line 5: derived percent "150" from "150" out of range -> skipped.',
        'Line 6: empty patient name after normalization "(операція)" -> skipped.',
    )
    assert len(outcome.drafts) == 1
    assert outcome.drafts[0].percent == 15.0
    assert outcome.drafts[0].doctor_income == 150.0


def test_repeated_header_and_totals_are_skipped_silently():
    text = "\n".join(
        [
            "Дата;ПІБ;Сума;%",
            "19.02.2026;Іваненко Петро;1000;30",
            "Дата;ПІБ;Сума;%",
            "20.02.2026;Коротін Олег;1000;30",
            ";Всього;2000;",
            ";Зараховано;600;",
        ]
    )
    outcome = parse_csv_visits(text, _options())
    assert len(outcome.drafts) == 2
    assert outcome.warnings == ()


def test_comma_file_with_english_header_and_quotes():
    text = 'Date,Full name,Amount,Percent,Procedure,Notes\n2026-02-19,"Smith, John",1000,30,,"said ""hi"""\n'
    outcome = parse_csv_visits(text, _options())

    assert outcome.delimiter == "comma"
    (draft,) = outcome.drafts
    assert draft.patient_name == "Smith, John"
    assert draft.notes == 'said "hi"'
    assert draft.doctor_income == 300.0


def test_tab_delimited_without_year_uses_default_year():
    text = "Дата\tПІБ\tСума\t%\n19.02\tІваненко Петро\t1000\t30"
    outcome = parse_csv_visits(text, _options(default_year=2025))
    assert outcome.delimiter == "tab"
    assert outcome.drafts[0].visit_date == "2025-02-19"


def test_forced_delimiter_is_used():
    text = "19.02.2026;Іваненко, Петро;1000;30"
    outcome = parse_csv_visits(text, _options(delimiter="semicolon"))
    assert outcome.drafts[0].patient_name == "Іваненко, Петро"


def test_fatal_errors():
    with pytest.raises(ImportFatalError, match="empty"):
        parse_csv_visits("\ufeff\n\n", _options())
    with pytest.raises(ImportFatalError, match="Invalid delimiter"):
        parse_csv_visits("a;b;c;d", _options(delimiter="pipe"))


def test_fold_rows_yields_one_result_per_row_and_carries_the_date():
    rows = [
        (2, ["19.02.2026", "Іваненко Петро", "1150", "30"]),
        (3, ["Дата", "ПІБ", "Сума", "%"]),
        (4, ["", "Коротін Олег", "abc", "25"]),
        (5, ["", "Ґудзь Анна", "1000", "20"]),
    ]
    results = list(fold_rows(rows, resolve_column_map([]), ParseContext(default_year=2026, owner_uid="owner-1")))

    assert len(results) == 4
    assert results[1].draft is None and results[1].warning is None
    assert results[2].warning == 'Line 4: invalid amount "abc" -> skipped.'
    assert results[3].draft.visit_date == "2026-02-19"


def test_large_journal_keeps_row_order():
    lines = ["Дата;ПІБ;Сума;%", "19.02.2026;Пацієнт 0;100;10"]
    lines += [f";Пацієнт {i};{'bad' if i % 10 == 0 else 100};10" for i in range(1, 20000)]
    outcome = parse_csv_visits("\n".join(lines), _options())

    assert len(outcome.drafts) == 18001
    assert len(outcome.warnings) == 1999
    assert outcome.drafts[-1].patient_name == "Пацієнт 19999"
    assert outcome.warnings[0].startswith("Line 12:")
