import logging
import random
from datetime import date

import pytest

from conftest import availability_row, roster_row
from worker_identity import (
    REASON_AMBIGUOUS,
    REASON_DUPLICATE,
    REASON_NOT_AVAILABLE,
    ResolveMode,
    WorkerRow,
    availability_row_to_worker,
    normalize_precinct,
    normalize_vr_id,
    parse_languages,
    record_availability,
    resolve_worker,
    roster_row_to_worker,
)
from worker_registry import DuplicateAvailabilityError


DAY = date(2024, 10, 12)


# -------------------
# Cell normalization
# -------------------

@pytest.mark.parametrize(
    "value, expected",
    [(7, 7), (7.0, 7), ("7", 7), (" 07 ", 7), ("12A", "12A"), ("", None), (None, None)],
)
def test_normalize_precinct(value, expected):
    assert normalize_precinct(value) == expected


@pytest.mark.parametrize("value, expected", [(123, "123"), (" 123 ", "123"), ("  ", ""), ("--", ""), ("N/A", "N/A")])
def test_normalize_vr_id(value, expected):
    assert normalize_vr_id(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [("Yes (Spanish)", "Spanish"), ("Yes", "Yes"), ("Yes ( French )", "French"), ("No", None), ("", None)],
)
def test_parse_languages(value, expected):
    assert parse_languages(value) == expected


def test_roster_row_scenario():
    row = roster_row_to_worker(
        ["", "Jane", "Doe", "Springfield", "555-1000", "jane@x.com", "Yes", "Yes (Spanish)"]
    )
    assert row.last_name == "Doe"
    assert row.first_name == "Jane"
    assert row.experienced is True
    assert row.languages == "Spanish"
    assert row.email == "jane@x.com"
    assert row.notes == ""


def test_roster_row_without_first_name_is_blank():
    assert roster_row_to_worker(["note", "", "Doe"]) is None
    assert roster_row_to_worker([None, None, None]) is None


def test_roster_row_ignores_email_without_at_and_renders_numeric_location():
    row = roster_row_to_worker(roster_row("Jane", "Doe", email="none", location=15.0))
    assert row.email is None
    assert row.location == "15"
    assert row.notes is None


def test_availability_row_blank_names():
    assert availability_row_to_worker([None, "  ", "123"]) is None


# ------------------
# Identity resolver
# ------------------

def test_upsert_creates_worker_from_roster_scenario(registry):
    row = roster_row_to_worker(
        ["", "Jane", "Doe", "Springfield", "555-1000", "jane@x.com", "Yes", "Yes (Spanish)"]
    )
    res = resolve_worker(registry, row, ResolveMode.UPSERT)
    assert res.action == "created"
    w = registry.get(res.worker_id)
    assert (w.last_name, w.first_name, w.experienced, w.languages) == ("Doe", "Jane", True, "Spanish")
    assert w.city == "Springfield"
    assert w.vr_id is None


def test_upsert_updates_notes_and_email_only_when_supplied(registry):
    first = roster_row_to_worker(roster_row("Jane", "Doe", email="jane@x.com", notes="Lead"))
    wid = resolve_worker(registry, first, ResolveMode.UPSERT).worker_id

    again = roster_row_to_worker(roster_row(" Jane ", "Doe", email="n/a", notes=None))
    res = resolve_worker(registry, again, ResolveMode.UPSERT)
    assert res == type(res)(wid, "updated")
    w = registry.get(wid)
    assert w.email == "jane@x.com"
    assert w.notes == "Lead"

    newer = roster_row_to_worker(roster_row("Jane", "Doe", email="jd@y.org", notes="Moved"))
    resolve_worker(registry, newer, ResolveMode.UPSERT)
    w = registry.get(wid)
    assert (w.email, w.notes) == ("jd@y.org", "Moved")


def test_upsert_is_order_independent_for_unique_names(registry):
    names = [("Doe", "Jane"), ("Doe", "John"), ("Smith", "Al"), ("Lee", "Ann")]
    rows = [roster_row_to_worker(roster_row(f, l)) for l, f in names] * 2
    random.Random(7).shuffle(rows)
    for row in rows:
        resolve_worker(registry, row, ResolveMode.UPSERT)
    listed = sorted((w.last_name, w.first_name) for w in registry.list_workers())
    assert listed == sorted(names)


def test_lookup_matches_numeric_vr_id_regardless_of_name(registry):
    wid = registry.insert_worker(last_name="Doe", first_name="Jane", vr_id="123")
    row = availability_row_to_worker(availability_row("Doe-Smith", "Janet", "123"))
    res = resolve_worker(registry, row, ResolveMode.LOOKUP)
    assert res.worker_id == wid
    assert res.action == "matched"
    assert len(registry) == 1


def test_lookup_backfills_worker_created_without_vr_id(registry):
    wid = resolve_worker(registry, roster_row_to_worker(roster_row("Jane", "Doe")), ResolveMode.UPSERT).worker_id
    row = availability_row_to_worker(availability_row("Doe", "Jane", "123", "7", "Clerk"))
    res = resolve_worker(registry, row, ResolveMode.LOOKUP)
    assert res.worker_id == wid
    assert res.action == "backfilled"
    w = registry.get(wid)
    assert (w.vr_id, w.precinct, w.role) == ("123", 7, "Clerk")
    assert len(registry) == 1


def test_name_only_fallback_without_new_data_is_a_plain_match(registry, monkeypatch):
    wid = registry.insert_worker(last_name="Doe", first_name="Jane", precinct=3)
    # Only the name-only lookup can see the worker
    monkeypatch.setattr(registry, "find_by_id_and_name", lambda *args, **kwargs: None)
    row = availability_row_to_worker(availability_row("Doe", "Jane", ""))
    res = resolve_worker(registry, row, ResolveMode.LOOKUP)
    assert res == type(res)(wid, "matched")
    assert registry.get(wid).precinct == 3
    assert len(registry) == 1


@pytest.mark.parametrize("vr", ["", "  ", "N/A", "--"])
def test_lookup_non_numeric_vr_id_backfills_by_name(registry, vr):
    wid = registry.insert_worker(last_name="Doe", first_name="Jane")
    row = availability_row_to_worker(availability_row("Doe", "Jane", vr, 7.0, "Judge"))
    res = resolve_worker(registry, row, ResolveMode.LOOKUP)
    assert res.worker_id == wid
    assert res.action == "backfilled"
    w = registry.get(wid)
    assert (w.vr_id, w.precinct, w.role) == (None, 7, "Judge")
    assert len(registry) == 1


def test_lookup_does_not_steal_worker_with_other_vr_id(registry):
    registry.insert_worker(last_name="Doe", first_name="Jane", vr_id="111")
    row = availability_row_to_worker(availability_row("Doe", "Jane", "222"))
    res = resolve_worker(registry, row, ResolveMode.LOOKUP)
    assert res.action == "created"
    assert len(registry) == 2
    assert registry.get(res.worker_id).vr_id == "222"


def test_numeric_vr_ids_stay_unique_across_names(registry):
    rows = [
        availability_row("Doe", "Jane", "123"),
        availability_row("Roe", "Rick", "123"),
        availability_row("Doe", "Jane", "456"),
    ]
    ids = [resolve_worker(registry, availability_row_to_worker(r), ResolveMode.LOOKUP).worker_id for r in rows]
    assert ids[0] == ids[1]
    assert ids[2] != ids[0]
    vr_ids = [w.vr_id for w in registry.list_workers()]
    assert sorted(vr_ids) == ["123", "456"]


def test_lookup_without_creation_returns_none(registry):
    row = availability_row_to_worker(availability_row("Ghost", "Gary", "999"))
    assert resolve_worker(registry, row, ResolveMode.LOOKUP, allow_create=False) is None
    assert len(registry) == 0


def test_lookup_creates_with_normalized_precinct(registry):
    row = availability_row_to_worker(availability_row("New", "Nell", "", "12A", "Clerk"))
    res = resolve_worker(registry, row, ResolveMode.LOOKUP)
    w = registry.get(res.worker_id)
    assert res.action == "created"
    assert (w.precinct, w.role, w.vr_id) == ("12A", "Clerk", None)


def test_names_are_not_case_folded(registry):
    registry.insert_worker(last_name="Doe", first_name="Jane")
    row = availability_row_to_worker(availability_row("DOE", "jane", ""))
    res = resolve_worker(registry, row, ResolveMode.LOOKUP)
    assert res.action == "created"
    assert len(registry) == 2


def test_same_name_workers_without_vr_id_merge(registry):
    a = resolve_worker(registry, WorkerRow(last_name="Doe", first_name="Jane"), ResolveMode.LOOKUP)
    b = resolve_worker(registry, WorkerRow(last_name="Doe", first_name="Jane"), ResolveMode.LOOKUP)
    assert a.worker_id == b.worker_id


# ----------------------
# Availability recorder
# ----------------------

@pytest.fixture
def worker_id(registry):
    return registry.insert_worker(last_name="Doe", first_name="Jane", vr_id="123")


@pytest.mark.parametrize("yes", ["Checked", " checked ", "CHECKED"])
def test_yes_only_is_recorded(registry, worker_id, yes):
    result = record_availability(registry, worker_id, DAY, yes, "Unchecked")
    assert result.recorded
    assert registry.list_availability(worker_id) == [DAY]


def test_neither_checked_is_silent(registry, worker_id, caplog):
    with caplog.at_level(logging.WARNING):
        result = record_availability(registry, worker_id, DAY, "", None)
    assert result.reason == REASON_NOT_AVAILABLE
    assert registry.list_availability(worker_id) == []
    assert caplog.records == []


def test_no_only_is_not_recorded(registry, worker_id):
    result = record_availability(registry, worker_id, DAY, "Unchecked", "Checked")
    assert not result.recorded
    assert registry.list_availability(worker_id) == []


def test_both_checked_emits_one_diagnostic(registry, worker_id, caplog):
    with caplog.at_level(logging.WARNING):
        result = record_availability(registry, worker_id, DAY, "Checked", "Checked", context="10-12 | Jane Doe")
    assert result.reason == REASON_AMBIGUOUS
    assert registry.list_availability(worker_id) == []
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "Jane Doe" in warnings[0].getMessage()
    assert "10-12" in warnings[0].getMessage()


def test_duplicate_is_skipped_when_lenient(registry, worker_id):
    record_availability(registry, worker_id, DAY, "Checked", "")
    result = record_availability(registry, worker_id, DAY, "Checked", "", lenient=True)
    assert result.reason == REASON_DUPLICATE
    assert registry.list_availability(worker_id) == [DAY]


def test_duplicate_is_fatal_when_strict(registry, worker_id):
    record_availability(registry, worker_id, DAY, "Checked", "")
    with pytest.raises(DuplicateAvailabilityError):
        record_availability(registry, worker_id, DAY, "Checked", "", lenient=False)
