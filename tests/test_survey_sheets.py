import logging
from datetime import date

import pandas as pd
import pytest

from conftest import AVAILABILITY_HEADER, HEADER_FONT, ROSTER_HEADER, availability_row, write_workbook
from survey_sheets import (
    AVAILABILITY_COLUMNS,
    ROSTER_COLUMNS,
    cell_text,
    parse_sheet_date,
    read_workbook_sheets,
    row_values,
    validate_header,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, ""),
        (float("nan"), ""),
        ("  Doe ", "Doe"),
        (7, "7"),
        (7.0, "7"),
        (7.5, "7.5"),
    ],
)
def test_cell_text(value, expected):
    assert cell_text(value) == expected


def test_row_values_pads_and_clears_na():
    raw = pd.DataFrame([["a", float("nan")]], dtype=object)
    assert row_values(raw, 0, 4) == ["a", None, None, None]


@pytest.mark.parametrize(
    "name, expected",
    [
        ("10-12", date(2024, 10, 12)),
        ("10-26 Sat", date(2024, 10, 26)),
        ("13-01", None),
        ("Summary", None),
    ],
)
def test_parse_sheet_date(name, expected):
    assert parse_sheet_date(name, 2024) == expected


def test_validate_header_match_consumes_row_and_returns_style():
    styles = [None, "roster-style"]
    check = validate_header(ROSTER_HEADER, ROSTER_COLUMNS, offset=1, header_styles=styles)
    assert check.matched
    assert check.data_start_row == 1
    assert check.header_style == "roster-style"


def test_validate_header_missing_precinct_is_degraded_not_fatal(caplog):
    header = ["Last Name", "First Name", "VR #", "Role", "Yes", "No"]
    with caplog.at_level(logging.WARNING):
        check = validate_header(
            header,
            AVAILABILITY_COLUMNS,
            header_styles=["style"] * 6,
            sheet_label="10-12",
            logger=logging.getLogger("survey_availability.tests"),
        )
    assert not check.matched
    assert check.data_start_row == 0
    assert check.header_style is None
    assert "Last Name,First Name,VR #,Role,Yes,No" in caplog.text


def test_validate_header_ignores_columns_past_schema():
    check = validate_header(AVAILABILITY_HEADER + ["Comments"], AVAILABILITY_COLUMNS)
    assert check.matched


def test_read_workbook_sheets_skips_empty_and_captures_styles(tmp_path, logger):
    path = write_workbook(
        tmp_path / "avail.xlsx",
        [
            ("10-12", [AVAILABILITY_HEADER, availability_row("Doe", "Jane", 123, 7)]),
            ("Empty", []),
        ],
    )
    sheets, warnings = read_workbook_sheets(path, logger)
    assert warnings == []
    assert [s.name for s in sheets] == ["10-12"]
    sheet = sheets[0]
    assert sheet.row_count == 2
    assert row_values(sheet.raw, 1, 7)[:4] == ["Doe", "Jane", 123, 7]
    assert sheet.header_styles[0].font.bold
    assert sheet.header_styles[0].font.color.rgb.endswith(HEADER_FONT.color.rgb[-6:])


def test_read_workbook_sheets_keeps_workbook_position(tmp_path, logger):
    path = write_workbook(
        tmp_path / "workers.xlsx",
        [("Empty", []), ("Summary", [["Survey"]]), ("Returning", [["Notes"]])],
    )
    sheets, _ = read_workbook_sheets(path, logger)
    assert [(s.name, s.index) for s in sheets] == [("Summary", 1), ("Returning", 2)]


def test_read_workbook_sheets_rejects_other_extensions(tmp_path, logger):
    p = tmp_path / "avail.xls"
    p.write_bytes(b"")
    sheets, warnings = read_workbook_sheets(p, logger)
    assert sheets == []
    assert "Unsupported extension" in warnings[0]
