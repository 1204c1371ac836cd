"""
worker_registry.py

In-process store for poll workers and their availability.

Indexes:
- primary map:      id -> Worker
- vr_id index:      usable (numeric-looking) VR # -> id
- name index:       (last_name, first_name) -> [id, ...]
- availability:     id -> sorted [date, ...]

A registry lives for one run. Use it as a context manager so it is always
closed, including on error.
"""

from __future__ import annotations

import logging
from bisect import bisect_left, insort
from dataclasses import dataclass, fields, replace
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union


# Wildcard for find_by_id_and_name (mirrors a SQL LIKE '%')
ANY = "%"


# ----------
# Errors
# ----------

class RegistryError(Exception):
    """Base class for registry failures."""


class RegistryClosedError(RegistryError):
    pass


class RepositoryInsertError(RegistryError):
    """An insert or update was rejected or did not affect exactly one record."""


class DuplicateAvailabilityError(RegistryError):
    def __init__(self, worker_id: int, day: date):
        super().__init__(f"Availability already recorded for worker {worker_id} on {day.isoformat()}")
        self.worker_id = worker_id
        self.day = day


# -------------
# Data classes
# -------------

@dataclass
class Worker:
    id: int
    last_name: str
    first_name: str
    vr_id: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    experienced: bool = False
    languages: Optional[str] = None
    location: Optional[str] = None
    precinct: Optional[Union[int, str]] = None
    role: Optional[str] = None
    notes: Optional[str] = None

    @property
    def name_key(self) -> Tuple[str, str]:
        return (self.last_name, self.first_name)

    @property
    def sort_key(self) -> Tuple[str, str, int]:
        return (self.last_name, self.first_name, self.id)


WORKER_FIELDS = tuple(f.name for f in fields(Worker))
MUTABLE_FIELDS = tuple(f for f in WORKER_FIELDS if f != "id")


def is_usable_vr_id(vr_id: Optional[str]) -> bool:
    """
    A VR # is a key only when it is non-empty and starts with a digit.
    """
    if vr_id is None:
        return False
    t = str(vr_id).strip()
    return bool(t) and t[0].isdigit()


# ----------
# Registry
# ----------

class WorkerRegistry:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("survey_availability.registry")
        self._workers: Dict[int, Worker] = {}
        self._by_vr_id: Dict[str, int] = {}
        self._by_name: Dict[Tuple[str, str], List[int]] = {}
        self._availability: Dict[int, List[date]] = {}
        self._next_id = 1
        self._closed = False

    # Resource handling

    def __enter__(self) -> "WorkerRegistry":
        self._check_open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self.logger.debug(
            f"Closing registry workers={len(self._workers)} "
            f"availability={sum(len(v) for v in self._availability.values())}"
        )
        self._workers.clear()
        self._by_vr_id.clear()
        self._by_name.clear()
        self._availability.clear()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise RegistryClosedError("Worker registry is closed")

    def __len__(self) -> int:
        return len(self._workers)

    # Queries

    def get(self, worker_id: int) -> Optional[Worker]:
        self._check_open()
        w = self._workers.get(worker_id)
        return replace(w) if w is not None else None

    def find_by_id_and_name(
        self,
        vr_id: str,
        last_name: str = ANY,
        first_name: str = ANY,
    ) -> Optional[Worker]:
        """
        Exact VR # lookup with optional exact name filters.
        ANY (or None) acts as a wildcard for any argument. When several
        workers match, the one created first wins.
        """
        self._check_open()
        wild_vr = vr_id is None or vr_id == ANY
        wild_last = last_name is None or last_name == ANY
        wild_first = first_name is None or first_name == ANY

        if not wild_vr:
            wid = self._by_vr_id.get(str(vr_id).strip())
            candidates = [wid] if wid is not None else []
        elif not wild_last and not wild_first:
            candidates = list(self._by_name.get((last_name, first_name), []))
        else:
            candidates = sorted(self._workers.keys())

        for wid in candidates:
            w = self._workers[wid]
            if not wild_last and w.last_name != last_name:
                continue
            if not wild_first and w.first_name != first_name:
                continue
            return replace(w)
        return None

    def find_by_name_only(self, last_name: str, first_name: str) -> Optional[Worker]:
        """
        Name lookup restricted to workers without a usable VR #.
        """
        self._check_open()
        for wid in self._by_name.get((last_name, first_name), []):
            w = self._workers[wid]
            if not is_usable_vr_id(w.vr_id):
                return replace(w)
        return None

    def list_workers(self) -> List[Worker]:
        self._check_open()
        return [replace(w) for w in sorted(self._workers.values(), key=lambda w: w.sort_key)]

    def list_availability(
        self,
        worker_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[date]:
        """
        Ordered availability dates for a worker; `start` inclusive, `end` exclusive.
        """
        self._check_open()
        days = self._availability.get(worker_id, [])
        lo = bisect_left(days, start) if start is not None else 0
        hi = bisect_left(days, end) if end is not None else len(days)
        return list(days[lo:hi])

    def availability_count(self) -> int:
        self._check_open()
        return sum(len(v) for v in self._availability.values())

    # Mutations

    def insert_worker(self, **attributes: Any) -> int:
        self._check_open()
        unknown = set(attributes) - set(MUTABLE_FIELDS)
        if unknown:
            raise RepositoryInsertError(f"Unknown worker attributes: {sorted(unknown)}")

        last_name = (attributes.get("last_name") or "").strip()
        first_name = (attributes.get("first_name") or "").strip()
        if not last_name or not first_name:
            raise RepositoryInsertError(
                f"Worker requires last and first name (got last={last_name!r}, first={first_name!r})"
            )
        attributes["last_name"] = last_name
        attributes["first_name"] = first_name

        vr_id = attributes.get("vr_id")
        if is_usable_vr_id(vr_id):
            vr_id = str(vr_id).strip()
            attributes["vr_id"] = vr_id
            if vr_id in self._by_vr_id:
                raise RepositoryInsertError(
                    f"VR # {vr_id} already belongs to worker {self._by_vr_id[vr_id]}"
                )
        else:
            attributes["vr_id"] = None

        wid = self._next_id
        self._next_id += 1
        worker = Worker(id=wid, **attributes)
        self._workers[wid] = worker
        self._by_name.setdefault(worker.name_key, []).append(wid)
        if worker.vr_id is not None:
            self._by_vr_id[worker.vr_id] = wid

        self.logger.debug(f"Inserted worker id={wid} vr_id={worker.vr_id} {first_name} {last_name}")
        return wid

    def update_worker(self, worker_id: int, **changes: Any) -> int:
        """
        Apply partial changes. Returns the number of affected workers (0 or 1).
        Names are not mutable through this call.
        """
        self._check_open()
        worker = self._workers.get(worker_id)
        if worker is None:
            return 0

        bad = set(changes) - (set(MUTABLE_FIELDS) - {"last_name", "first_name"})
        if bad:
            raise RepositoryInsertError(f"Cannot update worker attributes: {sorted(bad)}")

        if "vr_id" in changes:
            new_vr = changes["vr_id"]
            new_vr = str(new_vr).strip() if is_usable_vr_id(new_vr) else None
            owner = self._by_vr_id.get(new_vr) if new_vr is not None else None
            if owner is not None and owner != worker_id:
                raise RepositoryInsertError(f"VR # {new_vr} already belongs to worker {owner}")
            if worker.vr_id is not None and worker.vr_id != new_vr:
                del self._by_vr_id[worker.vr_id]
            if new_vr is not None:
                self._by_vr_id[new_vr] = worker_id
            changes["vr_id"] = new_vr

        for k, v in changes.items():
            setattr(worker, k, v)
        return 1

    def insert_availability(self, worker_id: int, day: date) -> int:
        self._check_open()
        if worker_id not in self._workers:
            raise RepositoryInsertError(f"Unknown worker id {worker_id} for availability {day.isoformat()}")
        days = self._availability.setdefault(worker_id, [])
        i = bisect_left(days, day)
        if i < len(days) and days[i] == day:
            raise DuplicateAvailabilityError(worker_id, day)
        insort(days, day)
        return 1
