#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
survey_availability.py

Poll-worker availability reconciliation for survey workbooks.

Input:
- Worker roster workbook (optional): sheets 1-2 (sheet 0 is the summary tab,
  see --roster-sheets) with
  Notes | First Name | Last Name | City | Phone # | Email | Poll Worker Exp. |
  Proficient in another language? | Location
- Availability workbook: one sheet per day, named MM-DD, with
  Last Name | First Name | VR # | Precinct | Role | Yes | No

Output:
- WorkerAvailability.xlsx (default: next to the availability workbook)
  sheets: Workers, one per 7-day window (e.g. "Oct 12-18"), NotScheduled
- _availability_run_report.csv (one row per processed sheet, utf-8-sig)
- optional per-sheet CSVs of the report (--csv-folder)

Logs:
- Console + logs/survey_availability.log

Identity rules:
- VR # starting with a digit is unique per worker and matched exactly
- otherwise workers are matched by exact (trimmed) last + first name
- an availability row with an unknown VR # falls back to a name match among
  workers that have no VR # yet, and backfills VR # / precinct / role

Availability rules:
- recorded only when 'Yes' is "Checked" and 'No' is not
- both checked -> warning, nothing recorded
- duplicate (worker, day) -> warning and skip (default) or fatal (--strict-duplicates)

A fatal error aborts the rest of the current sheet only; the run goes on and
exits with status 1 once the outputs are written.

Dependencies:
- pandas
- openpyxl
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import asdict, dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

import pandas as pd

from availability_report import (
    DEFAULT_MONTH,
    DEFAULT_WINDOW_END,
    DEFAULT_WINDOW_START,
    DEFAULT_YEAR,
    build_report,
    export_report_csvs,
    reporting_window,
    write_report,
)
from survey_sheets import (
    AVAILABILITY_COLUMN_OFFSET,
    AVAILABILITY_COLUMNS,
    ROSTER_COLUMN_OFFSET,
    ROSTER_COLUMNS,
    HeaderStyle,
    SheetData,
    format_row,
    parse_sheet_date,
    read_workbook_sheets,
    row_values,
    validate_header,
)
from worker_identity import (
    REASON_AMBIGUOUS,
    REASON_DUPLICATE,
    ResolveMode,
    WorkerRow,
    availability_row_to_worker,
    record_availability,
    resolve_worker,
    roster_row_to_worker,
)
from worker_registry import RegistryError, WorkerRegistry


DEFAULT_OUTPUT_NAME = "WorkerAvailability.xlsx"
DEFAULT_RUN_REPORT = "_availability_run_report.csv"
# Sheet 0 of the roster export is its summary tab
DEFAULT_ROSTER_SHEETS = (1, 2)


# -------------
# Data classes
# -------------

@dataclass(frozen=True)
class SheetRole:
    """
    How a sheet is parsed: its header schema, where the schema starts, how rows
    resolve to workers and whether rows carry availability. `sheet_indexes`
    limits the role to those 0-based workbook positions (None: every sheet).
    """
    name: str
    columns: Tuple[str, ...]
    column_offset: int
    mode: ResolveMode
    parse_row: Callable[[Sequence[Any]], Optional[WorkerRow]]
    records_availability: bool
    sheet_indexes: Optional[Tuple[int, ...]] = None

    @property
    def width(self) -> int:
        return self.column_offset + len(self.columns)

    def selects(self, sheet: SheetData) -> bool:
        return self.sheet_indexes is None or sheet.index in self.sheet_indexes


ROSTER_ROLE = SheetRole(
    name="roster",
    columns=ROSTER_COLUMNS,
    column_offset=ROSTER_COLUMN_OFFSET,
    mode=ResolveMode.UPSERT,
    parse_row=roster_row_to_worker,
    records_availability=False,
    sheet_indexes=DEFAULT_ROSTER_SHEETS,
)

AVAILABILITY_ROLE = SheetRole(
    name="availability",
    columns=AVAILABILITY_COLUMNS,
    column_offset=AVAILABILITY_COLUMN_OFFSET,
    mode=ResolveMode.LOOKUP,
    parse_row=availability_row_to_worker,
    records_availability=True,
)


@dataclass(frozen=True)
class RunOptions:
    availability_file: Path
    workers_file: Optional[Path] = None
    out_path: Optional[Path] = None
    csv_folder: Optional[Path] = None
    run_report_path: Path = Path(DEFAULT_RUN_REPORT)
    year: int = DEFAULT_YEAR
    month: int = DEFAULT_MONTH
    window_start: int = DEFAULT_WINDOW_START
    window_end: int = DEFAULT_WINDOW_END
    allow_new_workers: bool = True
    lenient_duplicates: bool = True
    roster_sheets: Tuple[int, ...] = DEFAULT_ROSTER_SHEETS

    @property
    def output_path(self) -> Path:
        if self.out_path is not None:
            return self.out_path
        return self.availability_file.parent / DEFAULT_OUTPUT_NAME


@dataclass
class SheetReport:
    file: str
    sheet: str
    role: str
    sheet_date: str = ""
    header_matched: bool = False
    rows_seen: int = 0
    rows_blank: int = 0
    workers_created: int = 0
    workers_updated: int = 0
    workers_matched: int = 0
    workers_backfilled: int = 0
    rows_unresolved: int = 0
    availability_recorded: int = 0
    availability_ambiguous: int = 0
    availability_duplicates: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def count(self, action: str) -> None:
        attr = f"workers_{action}"
        setattr(self, attr, getattr(self, attr) + 1)

    def as_row(self) -> dict:
        d = asdict(self)
        d["warnings"] = " | ".join(self.warnings)
        d["errors"] = " | ".join(self.errors)
        return d


@dataclass
class RunResult:
    reports: List[SheetReport] = field(default_factory=list)
    header_style: Optional[HeaderStyle] = None
    output_path: Optional[Path] = None
    workers: int = 0
    availability: int = 0

    @property
    def errors(self) -> List[str]:
        return [f"{r.file} | {r.sheet}: {e}" for r in self.reports for e in r.errors]

    @property
    def ok(self) -> bool:
        return not self.errors


class SheetProcessingError(Exception):
    """
    Fatal error for one sheet, carrying the offending row for diagnosis.
    """

    def __init__(self, sheet: str, row_index: int, values: Sequence[Any], cause: Exception):
        self.sheet = sheet
        self.row_index = row_index
        self.values = list(values)
        self.cause = cause
        super().__init__(f"Sheet '{sheet}' row {row_index + 1}: {cause} | data: {format_row(self.values)}")


# ----------
# Logging
# ----------

def setup_logging(debug: bool) -> logging.Logger:
    logger = logging.getLogger("survey_availability")
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        return logger

    os.makedirs("logs", exist_ok=True)
    log_path = Path("logs") / "survey_availability.log"

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(logging.DEBUG if debug else logging.INFO)
    fh.setFormatter(fmt)

    sh = logging.StreamHandler(sys.stdout)
    sh.setLevel(logging.DEBUG if debug else logging.INFO)
    sh.setFormatter(fmt)

    logger.addHandler(fh)
    logger.addHandler(sh)
    return logger


# ----------------
# Sheet pipeline
# ----------------

def load_sheet(
    sheet: SheetData,
    role: SheetRole,
    registry: WorkerRegistry,
    report: SheetReport,
    logger: logging.Logger,
    sheet_date: Optional[date] = None,
    allow_new_workers: bool = True,
    lenient_duplicates: bool = True,
) -> Optional[HeaderStyle]:
    """
    Feed every row of `sheet` through the resolver (and, for availability
    sheets, the recorder). Returns the header style when the header matched.

    Raises SheetProcessingError on the first fatal row; rows already
    processed stay in the registry.
    """
    if role.records_availability and sheet_date is None:
        raise ValueError(f"Availability sheet '{sheet.name}' needs a date")

    raw = sheet.raw
    if raw.empty:
        return None

    check = validate_header(
        row_values(raw, 0, role.width),
        role.columns,
        offset=role.column_offset,
        header_styles=sheet.header_styles,
        sheet_label=f"{report.file} | {sheet.name}",
        logger=logger,
    )
    report.header_matched = check.matched
    if not check.matched:
        report.warnings.append(f"Incorrect header order/missing headers: {','.join(check.actual)}")

    for r in range(check.data_start_row, len(raw)):
        values = row_values(raw, r, role.width)
        report.rows_seen += 1
        row = role.parse_row(values)
        if row is None:
            report.rows_blank += 1
            continue

        try:
            resolution = resolve_worker(
                registry,
                row,
                role.mode,
                allow_create=allow_new_workers,
                logger=logger,
            )
            if resolution is None:
                report.rows_unresolved += 1
                logger.info(f"{sheet.name}: skipping unknown worker {row.display_name} (VR# {row.vr_id or '-'})")
                continue
            report.count(resolution.action)

            if role.records_availability:
                yes_cell = values[role.column_offset + 5]
                no_cell = values[role.column_offset + 6]
                result = record_availability(
                    registry,
                    resolution.worker_id,
                    sheet_date,
                    yes_cell,
                    no_cell,
                    context=f"{sheet.name} | {row.display_name} (VR# {row.vr_id or '-'})",
                    lenient=lenient_duplicates,
                    logger=logger,
                )
                if result.recorded:
                    report.availability_recorded += 1
                elif result.reason == REASON_AMBIGUOUS:
                    report.availability_ambiguous += 1
                    report.warnings.append(result.message)
                elif result.reason == REASON_DUPLICATE:
                    report.availability_duplicates += 1
                    report.warnings.append(result.message)
        except RegistryError as e:
            logger.warning(f"Unable to insert data for: {format_row(values)}")
            raise SheetProcessingError(sheet.name, r, values, e) from e

    return check.header_style


def process_workbook(
    file_path: Path,
    role: SheetRole,
    registry: WorkerRegistry,
    options: RunOptions,
    logger: logging.Logger,
) -> Tuple[List[SheetReport], Optional[HeaderStyle]]:
    """
    Process every non-empty sheet of a workbook that `role` selects. A fatal
    sheet error is recorded on that sheet's report and the next sheet is
    processed.
    """
    reports: List[SheetReport] = []
    header_style: Optional[HeaderStyle] = None

    sheets, wb_warnings = read_workbook_sheets(file_path, logger)
    if not sheets:
        rep = SheetReport(file=file_path.name, sheet="", role=role.name, warnings=list(wb_warnings))
        if not wb_warnings:
            rep.warnings.append("No non-empty sheets found.")
        reports.append(rep)
        return reports, None

    for sheet in sheets:
        if not role.selects(sheet):
            logger.info(f"{file_path.name}: sheet '{sheet.name}' (index {sheet.index}) is not a {role.name} sheet, skipping")
            continue
        rep = SheetReport(file=file_path.name, sheet=sheet.name, role=role.name, warnings=list(wb_warnings))
        wb_warnings = []
        reports.append(rep)

        sheet_date = None
        if role.records_availability:
            sheet_date = parse_sheet_date(sheet.name, options.year)
            if sheet_date is None:
                msg = f"Sheet name '{sheet.name}' is not MM-DD; skipping sheet."
                logger.warning(f"{file_path.name}: {msg}")
                rep.warnings.append(msg)
                continue
            rep.sheet_date = sheet_date.isoformat()
            logger.info(f"Working day {sheet.name} ({rep.sheet_date})")
        else:
            logger.info(f"Working sheet {sheet.name}")

        try:
            style = load_sheet(
                sheet,
                role,
                registry,
                rep,
                logger,
                sheet_date=sheet_date,
                allow_new_workers=options.allow_new_workers,
                lenient_duplicates=options.lenient_duplicates,
            )
            if header_style is None and style is not None:
                header_style = style
        except SheetProcessingError as e:
            logger.exception(f"{file_path.name} | {sheet.name}: processing aborted")
            rep.errors.append(str(e))

        logger.debug(
            f"{file_path.name} | {sheet.name}: rows={rep.rows_seen} created={rep.workers_created} "
            f"updated={rep.workers_updated} matched={rep.workers_matched} backfilled={rep.workers_backfilled} "
            f"unresolved={rep.rows_unresolved} available={rep.availability_recorded}"
        )

    return reports, header_style


def write_run_report(reports: List[SheetReport], out_path: Path, logger: logging.Logger) -> Path:
    rep_df = pd.DataFrame([r.as_row() for r in reports])
    if rep_df.empty:
        rep_df = pd.DataFrame(columns=[f for f in SheetReport.__dataclass_fields__])
    rep_df.to_csv(out_path, index=False, encoding="utf-8-sig")
    logger.info(f"Wrote run report: {Path(out_path).resolve()} rows={len(rep_df)}")
    return out_path


def run_pipeline(options: RunOptions, logger: logging.Logger) -> RunResult:
    result = RunResult()
    window = reporting_window(options.year, options.month, options.window_start, options.window_end)

    with WorkerRegistry(logger=logger) as registry:
        roster_style: Optional[HeaderStyle] = None
        if options.workers_file is not None:
            logger.info(f"Processing worker roster: {options.workers_file.name}")
            roster_role = replace(ROSTER_ROLE, sheet_indexes=options.roster_sheets)
            reps, roster_style = process_workbook(options.workers_file, roster_role, registry, options, logger)
            result.reports.extend(reps)

        logger.info(f"Processing availability: {options.availability_file.name}")
        reps, avail_style = process_workbook(options.availability_file, AVAILABILITY_ROLE, registry, options, logger)
        result.reports.extend(reps)

        # Availability headers style the output; roster headers are the fallback
        result.header_style = avail_style or roster_style
        result.workers = len(registry)
        result.availability = registry.availability_count()

        logger.info("Writing.....")
        report = build_report(registry, window, logger)
        result.output_path = write_report(report, options.output_path, result.header_style, logger)
        if options.csv_folder is not None:
            export_report_csvs(report, options.csv_folder, logger)

    write_run_report(result.reports, options.run_report_path, logger)
    logger.info(f"Workers={result.workers} availability={result.availability} errors={len(result.errors)}")
    return result


# -----
# Main
# -----

def parse_sheet_indexes(text: str) -> Tuple[int, ...]:
    """
    '1-2' or '1,2' (0-based workbook positions) -> (1, 2).
    """
    out: List[int] = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        lo, sep, hi = part.partition("-")
        try:
            first = int(lo)
            last = int(hi) if sep else first
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid sheet index range: {part!r}")
        if first < 0 or last < first:
            raise argparse.ArgumentTypeError(f"Invalid sheet index range: {part!r}")
        out.extend(range(first, last + 1))
    if not out:
        raise argparse.ArgumentTypeError("No sheet indexes given")
    return tuple(out)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile poll-worker survey workbooks into an availability workbook.")
    parser.add_argument("--availability", required=True, help="Availability workbook (.xlsx/.xlsm), one sheet per MM-DD")
    parser.add_argument("--workers", default=None, help="Worker roster workbook (.xlsx/.xlsm)")
    parser.add_argument(
        "--roster-sheets",
        type=parse_sheet_indexes,
        default=DEFAULT_ROSTER_SHEETS,
        help="0-based roster sheet positions to load, e.g. 1-2 or 1,3 (default: 1-2; sheet 0 is the summary tab)",
    )
    parser.add_argument("--out", default=None, help=f"Output workbook (default: {DEFAULT_OUTPUT_NAME} next to --availability)")
    parser.add_argument("--csv-folder", default=None, help="Also write every report sheet as CSV into this folder")
    parser.add_argument("--out-report", default=DEFAULT_RUN_REPORT, help=f"Per-sheet run report CSV (default: {DEFAULT_RUN_REPORT})")
    parser.add_argument("--year", type=int, default=DEFAULT_YEAR, help=f"Year of the MM-DD sheets (default: {DEFAULT_YEAR})")
    parser.add_argument("--month", type=int, default=DEFAULT_MONTH, help=f"Reporting month (default: {DEFAULT_MONTH})")
    parser.add_argument("--window-start", type=int, default=DEFAULT_WINDOW_START, help=f"First reported day (default: {DEFAULT_WINDOW_START})")
    parser.add_argument("--window-end", type=int, default=DEFAULT_WINDOW_END, help=f"Last reported day (default: {DEFAULT_WINDOW_END})")
    parser.add_argument("--skip-unknown", action="store_true", help="Skip availability rows for workers not on the roster instead of adding them")
    parser.add_argument("--strict-duplicates", action="store_true", help="Treat a repeated worker/day availability as a fatal sheet error")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = setup_logging(args.debug)

    availability = Path(args.availability)
    if not availability.exists():
        logger.error(f"Availability workbook not found: {availability.resolve()}")
        return 2

    workers = Path(args.workers) if args.workers else None
    if workers is not None and not workers.exists():
        logger.error(f"Worker roster not found: {workers.resolve()}")
        return 2

    options = RunOptions(
        availability_file=availability,
        workers_file=workers,
        out_path=Path(args.out) if args.out else None,
        csv_folder=Path(args.csv_folder) if args.csv_folder else None,
        run_report_path=Path(args.out_report),
        year=args.year,
        month=args.month,
        window_start=args.window_start,
        window_end=args.window_end,
        allow_new_workers=not args.skip_unknown,
        lenient_duplicates=not args.strict_duplicates,
        roster_sheets=args.roster_sheets,
    )

    try:
        reporting_window(options.year, options.month, options.window_start, options.window_end)
    except ValueError as e:
        logger.error(str(e))
        return 2

    result = run_pipeline(options, logger)

    if not result.ok:
        for err in result.errors:
            logger.error(err)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
