"""
availability_report.py

Projects the worker registry into the availability workbook:

- Workers:      every worker, full identity columns + one column per day
- <Mon> S-E:    one sheet per 7-day window, short identity columns + days
- NotScheduled: workers with no VR # or no availability, identity columns only

Day columns are placed with day_to_column(); 'X' marks an available day.
"""

from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import pandas as pd
from openpyxl.styles import Alignment, Font

from survey_sheets import HeaderStyle
from worker_registry import Worker, WorkerRegistry, is_usable_vr_id


MASTER_SHEET = "Workers"
UNSCHEDULED_SHEET = "NotScheduled"

MASTER_COLUMNS = [
    "Note",
    "Last Name",
    "First Name",
    "VR #",
    "City",
    "Phone",
    "Email",
    "Experienced",
    "Languages",
    "Location",
    "Precinct",
    "Role",
]
WEEKLY_COLUMNS = ["Last Name", "First Name", "VR #", "Precinct", "Role"]

AVAILABLE_MARK = "X"

DEFAULT_YEAR = 2024
DEFAULT_MONTH = 10
DEFAULT_WINDOW_START = 12
DEFAULT_WINDOW_END = 30
WEEK_LENGTH = 7


# -------------
# Data classes
# -------------

@dataclass(frozen=True)
class ReportWindow:
    year: int
    month: int
    start_day: int
    end_day: int  # inclusive

    @property
    def days(self) -> List[int]:
        return list(range(self.start_day, self.end_day + 1))

    @property
    def first_date(self) -> date:
        return date(self.year, self.month, self.start_day)

    @property
    def end_date_exclusive(self) -> date:
        return date(self.year, self.month, self.end_day) + timedelta(days=1)

    @property
    def sheet_name(self) -> str:
        return f"{calendar.month_abbr[self.month]} {self.start_day}-{self.end_day}"


@dataclass
class AvailabilityReport:
    window: ReportWindow
    master: pd.DataFrame
    weekly: List[Tuple[str, pd.DataFrame]] = field(default_factory=list)
    unscheduled: pd.DataFrame = field(default_factory=pd.DataFrame)

    def sheets(self) -> List[Tuple[str, pd.DataFrame]]:
        return [(MASTER_SHEET, self.master)] + list(self.weekly) + [(UNSCHEDULED_SHEET, self.unscheduled)]


# -----------------
# Window arithmetic
# -----------------

def reporting_window(
    year: int = DEFAULT_YEAR,
    month: int = DEFAULT_MONTH,
    start_day: int = DEFAULT_WINDOW_START,
    end_day: int = DEFAULT_WINDOW_END,
) -> ReportWindow:
    """
    Reporting window, end clamped to the month's last day.
    """
    month_len = calendar.monthrange(year, month)[1]
    end = min(end_day, month_len)
    if start_day < 1 or start_day > end:
        raise ValueError(f"Invalid reporting window {start_day}-{end_day} for {year}-{month:02d}")
    return ReportWindow(year=year, month=month, start_day=start_day, end_day=end)


def weekly_windows(window: ReportWindow, length: int = WEEK_LENGTH) -> List[ReportWindow]:
    out: List[ReportWindow] = []
    s = window.start_day
    while s <= window.end_day:
        out.append(ReportWindow(window.year, window.month, s, min(s + length - 1, window.end_day)))
        s += length
    return out


def day_to_column(day: int, window_start: int, identity_count: int) -> int:
    """
    0-based column of `day` in a sheet whose first day column is `window_start`
    and which carries `identity_count` leading identity columns.
    """
    if day < window_start:
        raise ValueError(f"Day {day} precedes window start {window_start}")
    return (day - window_start) + identity_count


# -----------------
# Row projections
# -----------------

def _master_identity(w: Worker) -> List[Any]:
    return [
        w.notes or "",
        w.last_name,
        w.first_name,
        w.vr_id or "",
        w.city or "",
        w.phone or "",
        w.email or "",
        AVAILABLE_MARK if w.experienced else "",
        w.languages or "",
        w.location or "",
        "" if w.precinct is None else w.precinct,
        w.role or "",
    ]


def _weekly_identity(w: Worker) -> List[Any]:
    return [
        w.last_name,
        w.first_name,
        w.vr_id or "",
        "" if w.precinct is None else w.precinct,
        w.role or "",
    ]


def _grid_row(identity: List[Any], days: Sequence[date], window: ReportWindow) -> List[Any]:
    n = len(identity)
    row = identity + [""] * len(window.days)
    for d in days:
        row[day_to_column(d.day, window.start_day, n)] = AVAILABLE_MARK
    return row


def _grid_frame(
    registry: WorkerRegistry,
    workers: Sequence[Worker],
    window: ReportWindow,
    columns: List[str],
    identity_fn,
) -> pd.DataFrame:
    header = columns + [str(d) for d in window.days]
    rows = []
    for w in workers:
        days = registry.list_availability(w.id, window.first_date, window.end_date_exclusive)
        rows.append(_grid_row(identity_fn(w), days, window))
    return pd.DataFrame(rows, columns=header)


def build_report(
    registry: WorkerRegistry,
    window: ReportWindow,
    logger: Optional[logging.Logger] = None,
) -> AvailabilityReport:
    log = logger or logging.getLogger("survey_availability")
    workers = registry.list_workers()

    log.info(f"Working sheet {MASTER_SHEET} workers={len(workers)} days={window.start_day}-{window.end_day}")
    master = _grid_frame(registry, workers, window, MASTER_COLUMNS, _master_identity)

    weekly: List[Tuple[str, pd.DataFrame]] = []
    for wk in weekly_windows(window):
        log.info(f"Working sheet {wk.sheet_name}")
        weekly.append((wk.sheet_name, _grid_frame(registry, workers, wk, WEEKLY_COLUMNS, _weekly_identity)))

    not_scheduled = [
        w for w in workers
        if not is_usable_vr_id(w.vr_id) or not registry.list_availability(w.id)
    ]
    log.info(f"Working sheet {UNSCHEDULED_SHEET} workers={len(not_scheduled)}")
    unscheduled = pd.DataFrame([_master_identity(w) for w in not_scheduled], columns=MASTER_COLUMNS)

    return AvailabilityReport(window=window, master=master, weekly=weekly, unscheduled=unscheduled)


# ---------
# Writers
# ---------

def write_report(
    report: AvailabilityReport,
    out_path: Path,
    header_style: Optional[HeaderStyle] = None,
    logger: Optional[logging.Logger] = None,
) -> Path:
    """
    Write all report sheets to one .xlsx, stamping the header row with
    `header_style` (bold when none was captured) and centring the marks.
    """
    log = logger or logging.getLogger("survey_availability")
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    center = Alignment(horizontal="center")
    fallback_font = Font(bold=True)

    with pd.ExcelWriter(out_path, engine="openpyxl") as writer:
        for name, df in report.sheets():
            df.to_excel(writer, sheet_name=name, index=False)
            ws = writer.sheets[name]
            for cell in ws[1]:
                if header_style is not None:
                    header_style.apply(cell)
                else:
                    cell.font = fallback_font
            for row in ws.iter_rows(min_row=2):
                for cell in row:
                    if cell.value == AVAILABLE_MARK:
                        cell.alignment = center
            ws.freeze_panes = "A2"

    log.info(f"Wrote availability workbook: {out_path.resolve()}")
    return out_path


def export_report_csvs(
    report: AvailabilityReport,
    out_folder: Path,
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    log = logger or logging.getLogger("survey_availability")
    out_folder = Path(out_folder)
    out_folder.mkdir(parents=True, exist_ok=True)

    paths: List[Path] = []
    for name, df in report.sheets():
        safe = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("_")
        p = out_folder / f"{safe}.csv"
        df.to_csv(p, index=False, encoding="utf-8-sig")
        log.info(f"Wrote {p.resolve()} rows={len(df)}")
        paths.append(p)
    return paths
