import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence

import pytest
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from survey_sheets import AVAILABILITY_COLUMNS, ROSTER_COLUMNS
from worker_registry import WorkerRegistry


ROSTER_HEADER = ["Notes"] + list(ROSTER_COLUMNS)
AVAILABILITY_HEADER = list(AVAILABILITY_COLUMNS)

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("survey_availability.tests")


@pytest.fixture
def registry():
    with WorkerRegistry() as reg:
        yield reg


def write_workbook(
    path: Path,
    sheets: Sequence[tuple],
    styled_header: bool = True,
) -> Path:
    """
    sheets: [(title, [row, ...]), ...]; the first row of each sheet is styled.
    """
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets:
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(list(row))
        if styled_header and rows:
            for cell in ws[1]:
                cell.font = HEADER_FONT
                cell.fill = HEADER_FILL
    wb.save(path)
    return path


def availability_row(
    last: str,
    first: str,
    vr: Any = "",
    precinct: Any = "",
    role: str = "",
    yes: str = "Checked",
    no: str = "",
) -> List[Any]:
    return [last, first, vr, precinct, role, yes, no]


def roster_row(
    first: str,
    last: str,
    city: str = "",
    phone: str = "",
    email: str = "",
    exp: str = "No",
    lang: str = "No",
    notes: Optional[str] = None,
    location: Any = None,
) -> List[Any]:
    return [notes, first, last, city, phone, email, exp, lang, location]
