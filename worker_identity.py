"""
worker_identity.py

Identity resolution and availability recording.

Matching policy for a survey row:
1. VR # starting with a digit -> exact VR # lookup (names are wildcards).
   Anything else -> exact last + first name lookup, VR # wildcard.
2. Found -> return it (roster upsert refreshes notes/email; an availability
   row backfills precinct/role on a worker that still has no VR #).
3. Not found on the roster -> insert.
4. Not found on an availability sheet -> retry by name among workers without
   a VR #, backfill VR # / precinct / role on success; otherwise insert, or
   return None when creation is disabled.

Names are trimmed but never case-folded. Two different people who share a
name and have no VR # resolve to the same worker.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Union

from survey_sheets import cell_text
from worker_registry import (
    ANY,
    DuplicateAvailabilityError,
    RepositoryInsertError,
    Worker,
    WorkerRegistry,
    is_usable_vr_id,
)


CHECKED = "checked"

INTEGER_REGEX = re.compile(r"^[+-]?\d+$")

# RecordResult reasons
REASON_NOT_AVAILABLE = "not_available"
REASON_AMBIGUOUS = "both_checked"
REASON_DUPLICATE = "duplicate"


class ResolveMode(str, Enum):
    UPSERT = "upsert"
    LOOKUP = "lookup"


# -------------
# Data classes
# -------------

@dataclass(frozen=True)
class WorkerRow:
    """
    A worker as described by one survey row. None means "not supplied".
    """
    last_name: str
    first_name: str
    vr_id: str = ""
    precinct: Optional[Union[int, str]] = None
    role: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    experienced: bool = False
    languages: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def insert_attributes(self) -> Dict[str, Any]:
        return dict(
            last_name=self.last_name,
            first_name=self.first_name,
            vr_id=self.vr_id if is_usable_vr_id(self.vr_id) else None,
            city=self.city,
            phone=self.phone,
            email=self.email,
            experienced=self.experienced,
            languages=self.languages,
            location=self.location,
            precinct=self.precinct,
            role=self.role,
            notes=self.notes,
        )


@dataclass(frozen=True)
class Resolution:
    worker_id: int
    # matched / created / updated / backfilled
    action: str


@dataclass(frozen=True)
class RecordResult:
    recorded: bool
    reason: Optional[str] = None
    message: Optional[str] = None


# -------------------
# Cell normalization
# -------------------

def _optional_text(v: Any) -> Optional[str]:
    t = cell_text(v)
    return t or None


def normalize_vr_id(v: Any) -> str:
    """
    Trimmed VR #. Whitespace/punctuation-only values collapse to ''.
    """
    t = cell_text(v)
    if not re.search(r"\w", t):
        return ""
    return t


def normalize_precinct(v: Any) -> Optional[Union[int, str]]:
    """
    Numeric cells and numeric-looking strings -> int; other strings as-is;
    blanks -> None.
    """
    t = cell_text(v)
    if not t:
        return None
    if INTEGER_REGEX.match(t):
        return int(t)
    try:
        f = float(t)
    except ValueError:
        return t
    return int(f) if f.is_integer() else t


def parse_email(v: Any) -> Optional[str]:
    t = cell_text(v)
    return t if "@" in t else None


def parse_experienced(v: Any) -> bool:
    return cell_text(v).lower() == "yes"


def parse_languages(v: Any) -> Optional[str]:
    """
    'Yes (Spanish)' -> 'Spanish', 'Yes' -> 'Yes', anything else -> None.
    """
    t = cell_text(v)
    if not t.startswith("Yes"):
        return None
    start = t.find("(")
    if start < 0:
        return t
    end = t.find(")", start + 1)
    inner = t[start + 1:end] if end > start else t[start + 1:]
    return inner.strip() or t


def is_checked(v: Any) -> bool:
    return cell_text(v).lower() == CHECKED


# ---------------
# Row conversion
# ---------------

def roster_row_to_worker(values: Sequence[Any]) -> Optional[WorkerRow]:
    """
    Roster layout: Notes, First Name, Last Name, City, Phone #, Email,
    Poll Worker Exp., Proficient in another language?, Location.
    Returns None for a blank row (empty first name).
    """
    v = list(values) + [None] * max(0, 9 - len(values))
    first_name = cell_text(v[1])
    if not first_name:
        return None
    return WorkerRow(
        last_name=cell_text(v[2]),
        first_name=first_name,
        city=_optional_text(v[3]),
        phone=_optional_text(v[4]),
        email=parse_email(v[5]),
        experienced=parse_experienced(v[6]),
        languages=parse_languages(v[7]),
        location=_optional_text(v[8]),
        notes=None if v[0] is None else cell_text(v[0]),
    )


def availability_row_to_worker(values: Sequence[Any]) -> Optional[WorkerRow]:
    """
    Availability layout: Last Name, First Name, VR #, Precinct, Role, Yes, No.
    Returns None when both name cells are empty.
    """
    v = list(values) + [None] * max(0, 7 - len(values))
    last_name = cell_text(v[0])
    first_name = cell_text(v[1])
    if not last_name and not first_name:
        return None
    return WorkerRow(
        last_name=last_name,
        first_name=first_name,
        vr_id=normalize_vr_id(v[2]),
        precinct=normalize_precinct(v[3]),
        role=_optional_text(v[4]),
    )


# ------------------
# Identity resolver
# ------------------

def _check_one(affected: int, what: str) -> None:
    if affected != 1:
        raise RepositoryInsertError(f"Unable to {what} (affected={affected})")


def _backfill(registry: WorkerRegistry, worker: Worker, row: WorkerRow) -> bool:
    changes: Dict[str, Any] = {}
    if is_usable_vr_id(row.vr_id):
        changes["vr_id"] = row.vr_id
    if row.precinct is not None:
        changes["precinct"] = row.precinct
    if row.role is not None:
        changes["role"] = row.role
    if not changes:
        return False
    _check_one(registry.update_worker(worker.id, **changes), f"backfill {row.display_name}")
    return True


def resolve_worker(
    registry: WorkerRegistry,
    row: WorkerRow,
    mode: ResolveMode,
    allow_create: bool = True,
    logger: Optional[logging.Logger] = None,
) -> Optional[Resolution]:
    """
    Map a survey row onto a worker id. Returns None only in lookup mode with
    creation disabled and no match.
    """
    log = logger or logging.getLogger("survey_availability")
    numeric_vr = is_usable_vr_id(row.vr_id)

    if numeric_vr:
        found = registry.find_by_id_and_name(row.vr_id, ANY, ANY)
    else:
        found = registry.find_by_id_and_name(ANY, row.last_name, row.first_name)

    if found is not None:
        if mode is ResolveMode.UPSERT:
            changes = dict(
                notes=found.notes if row.notes is None else row.notes,
                email=found.email if row.email is None else row.email,
            )
            _check_one(registry.update_worker(found.id, **changes), f"update {row.display_name}")
            return Resolution(found.id, "updated")

        if not numeric_vr and not is_usable_vr_id(found.vr_id) and _backfill(registry, found, row):
            log.debug(f"Backfilled worker {found.id} ({row.display_name})")
            return Resolution(found.id, "backfilled")
        return Resolution(found.id, "matched")

    if mode is ResolveMode.LOOKUP:
        # VR # was unknown; the worker may have been entered without one
        fallback = registry.find_by_name_only(row.last_name, row.first_name)
        if fallback is not None:
            if not _backfill(registry, fallback, row):
                return Resolution(fallback.id, "matched")
            log.debug(f"Backfilled VR# {row.vr_id} onto worker {fallback.id} ({row.display_name})")
            return Resolution(fallback.id, "backfilled")
        if not allow_create:
            return None

    try:
        wid = registry.insert_worker(**row.insert_attributes())
    except RepositoryInsertError:
        log.error(f"Unable to insert {row.display_name}")
        raise
    log.debug(f"Inserted VR# {row.vr_id or '-'}/{wid} {row.display_name}")
    return Resolution(wid, "created")


# ----------------------
# Availability recorder
# ----------------------

def record_availability(
    registry: WorkerRegistry,
    worker_id: int,
    day: date,
    yes_cell: Any,
    no_cell: Any,
    context: str = "",
    lenient: bool = True,
    logger: Optional[logging.Logger] = None,
) -> RecordResult:
    """
    Record (worker, day) when only the 'Yes' box is checked.

    `context` names the worker/sheet in diagnostics. A duplicate (worker, day)
    raises DuplicateAvailabilityError unless `lenient`.
    """
    log = logger or logging.getLogger("survey_availability")

    if not is_checked(yes_cell):
        return RecordResult(recorded=False, reason=REASON_NOT_AVAILABLE)

    if is_checked(no_cell):
        msg = f"{context}: both 'Yes' & 'No' checked for {day.isoformat()}"
        log.warning(msg)
        return RecordResult(recorded=False, reason=REASON_AMBIGUOUS, message=msg)

    try:
        registry.insert_availability(worker_id, day)
    except DuplicateAvailabilityError:
        if not lenient:
            raise
        msg = f"{context}: availability for {day.isoformat()} already recorded, skipping"
        log.warning(msg)
        return RecordResult(recorded=False, reason=REASON_DUPLICATE, message=msg)

    log.debug(f"Inserted availability worker={worker_id} day={day.isoformat()}")
    return RecordResult(recorded=True)
