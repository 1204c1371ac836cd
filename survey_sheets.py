"""
survey_sheets.py

Workbook reading and header validation for the roster and availability
surveys.

Each sheet is read into a raw DataFrame (no header row interpretation) so the
header row can be validated against the fixed schema of its role and, on
mismatch, still be processed as data.
"""

from __future__ import annotations

import logging
import re
from copy import copy
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import pandas as pd
from openpyxl import load_workbook
from pandas.api.types import is_scalar


# -----------------------
# Fixed sheet schemas
# -----------------------

# Roster: Notes sits at column 0, schema starts at column 1, Location at 8
ROSTER_COLUMNS = (
    "First Name",
    "Last Name",
    "City",
    "Phone #",
    "Email",
    "Poll Worker Exp.",
    "Proficient in another language?",
)
ROSTER_COLUMN_OFFSET = 1

AVAILABILITY_COLUMNS = (
    "Last Name",
    "First Name",
    "VR #",
    "Precinct",
    "Role",
    "Yes",
    "No",
)
AVAILABILITY_COLUMN_OFFSET = 0

SUPPORTED_EXTENSIONS = (".xlsx", ".xlsm")

# Availability sheets are named MM-DD, optionally followed by anything
SHEET_DATE_REGEX = re.compile(r"^\s*(\d{2})-(\d{2})")


# -------------
# Data classes
# -------------

@dataclass(frozen=True)
class HeaderStyle:
    """
    Formatting captured from a valid header cell, used to stamp output headers.
    Holds openpyxl style objects (copied, so they can move across workbooks).
    """
    font: Any = None
    fill: Any = None
    border: Any = None
    alignment: Any = None

    @classmethod
    def from_cell(cls, cell: Any) -> Optional["HeaderStyle"]:
        if cell is None or not getattr(cell, "has_style", False):
            return None
        return cls(
            font=copy(cell.font),
            fill=copy(cell.fill),
            border=copy(cell.border),
            alignment=copy(cell.alignment),
        )

    def apply(self, cell: Any) -> None:
        if self.font is not None:
            cell.font = copy(self.font)
        if self.fill is not None:
            cell.fill = copy(self.fill)
        if self.border is not None:
            cell.border = copy(self.border)
        if self.alignment is not None:
            cell.alignment = copy(self.alignment)


@dataclass
class SheetData:
    name: str
    raw: pd.DataFrame
    # Position in the workbook, counting empty sheets
    index: int = 0
    # Style of each cell in the first row, by 0-based column
    header_styles: List[Optional[HeaderStyle]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return int(len(self.raw))


@dataclass(frozen=True)
class HeaderCheck:
    matched: bool
    actual: Tuple[str, ...]
    header_style: Optional[HeaderStyle] = None

    @property
    def data_start_row(self) -> int:
        # A matched header row is consumed; otherwise row 0 is data
        return 1 if self.matched else 0


# ----------
# Cells
# ----------

def is_na_scalar(v: Any) -> bool:
    """
    Safe NA check that never returns an array/Series.
    """
    if v is None:
        return True
    if is_scalar(v):
        return bool(pd.isna(v))
    return False


def cell_text(v: Any) -> str:
    """
    Trimmed string form of a cell. Integral numbers lose their '.0'.
    """
    if is_na_scalar(v):
        return ""
    if isinstance(v, bool):
        return str(v)
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v).strip()


def row_values(raw: pd.DataFrame, r: int, width: int) -> List[Any]:
    """
    Row `r` of a raw sheet, NA turned into None and padded to `width` cells.
    """
    vals = [None if is_na_scalar(v) else v for v in raw.iloc[r, :].tolist()]
    if len(vals) < width:
        vals.extend([None] * (width - len(vals)))
    return vals


def format_row(values: Sequence[Any]) -> str:
    return ",".join(cell_text(v) for v in values)


# -------------------------
# Workbook / sheet reading
# -------------------------

def read_workbook_sheets(
    file_path: Path,
    logger: logging.Logger,
) -> Tuple[List[SheetData], List[str]]:
    """
    Returns (non-empty sheets in workbook order, warnings).
    Unsupported extensions and unreadable workbooks produce a warning and no sheets.
    """
    warnings: List[str] = []
    suffix = file_path.suffix.lower()

    if suffix not in SUPPORTED_EXTENSIONS:
        msg = f"Unsupported extension: {suffix} (expected .xlsx/.xlsm)"
        warnings.append(msg)
        logger.warning(f"{file_path.name}: {msg}")
        return [], warnings

    try:
        wb = load_workbook(file_path, data_only=True)
    except Exception as e:
        warnings.append(f"Failed to open workbook: {e}")
        logger.exception(f"{file_path.name}: Failed to open workbook")
        return [], warnings

    sheets: List[SheetData] = []
    try:
        for index, ws in enumerate(wb.worksheets):
            raw = pd.DataFrame(list(ws.iter_rows(values_only=True)), dtype=object)
            non_empty_cells = int(raw.notna().sum().sum()) if not raw.empty else 0
            if non_empty_cells == 0:
                logger.debug(f"{file_path.name}: sheet '{ws.title}' is empty, skipping")
                continue
            styles = [HeaderStyle.from_cell(c) for c in next(ws.iter_rows(min_row=1, max_row=1))]
            sheets.append(SheetData(name=ws.title, raw=raw, index=index, header_styles=styles))
    finally:
        wb.close()

    return sheets, warnings


def parse_sheet_date(sheet_name: str, year: int) -> Optional[date]:
    """
    Availability sheets are named 'MM-DD...'. Returns None when the name does
    not encode a valid date.
    """
    m = SHEET_DATE_REGEX.match(sheet_name or "")
    if not m:
        return None
    try:
        return date(year, int(m.group(1)), int(m.group(2)))
    except ValueError:
        return None


# -----------------
# Header validation
# -----------------

def validate_header(
    first_row: Sequence[Any],
    columns: Sequence[str],
    offset: int = 0,
    header_styles: Optional[Sequence[Optional[HeaderStyle]]] = None,
    sheet_label: str = "",
    logger: Optional[logging.Logger] = None,
) -> HeaderCheck:
    """
    Compare the leading columns of the first row against the expected titles.

    On match the style of the first schema cell is returned as the format hint.
    On mismatch the literal row is logged and returned; nothing is raised.
    """
    width = offset + len(columns)
    cells = list(first_row[:width])
    if len(cells) < width:
        cells.extend([None] * (width - len(cells)))
    actual = tuple(cell_text(v) for v in cells[offset:width])

    if actual == tuple(columns):
        style = None
        if header_styles and offset < len(header_styles):
            style = header_styles[offset]
        return HeaderCheck(matched=True, actual=actual, header_style=style)

    if logger is not None:
        logger.warning(f"{sheet_label}: Incorrect header order/missing headers: {format_row(cells)}")
    return HeaderCheck(matched=False, actual=actual, header_style=None)
