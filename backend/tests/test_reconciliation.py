from datetime import date, datetime, timezone

import pytest

from integrations.reconciliation import (
    FOODY_ALIASES,
    Milestone,
    Shift,
    StatusEvent,
    average_minutes,
    business_day_bounds,
    classify_workday,
    diff_minutes,
    format_minutes,
    history_from_payload,
    parse_timestamp,
    reconcile,
    to_naive_utc,
)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, 1, hour, minute, tzinfo=timezone.utc)


def _foody_history(*pairs) -> list[StatusEvent]:
    return [StatusEvent(label=label, at=_at(*hm)) for label, hm in pairs]


def test_foody_history_yields_10_10_20_40_minutes():
    history = _foody_history(
        ("Delivered", (12, 40)),
        ("Dispatching", (12, 10)),
        ("Dispatched", (12, 20)),
    )

    times = reconcile(_at(12), history, aliases=FOODY_ALIASES)

    assert times.ready_at == _at(12, 10)
    assert times.picked_up_at == _at(12, 20)
    assert times.delivered_at == _at(12, 40)
    assert times.durations == {
        "prep_time": 10.0,
        "pickup_time": 10.0,
        "delivery_time": 20.0,
        "total_time": 40.0,
    }
    assert times.invalidated is False


def test_zero_prep_and_pickup_invalidates_every_derived_value():
    history = _foody_history(
        ("Dispatching", (12, 0)),
        ("Dispatched", (12, 0)),
        ("Delivered", (12, 40)),
    )

    times = reconcile(_at(12), history, aliases=FOODY_ALIASES)

    assert times.invalidated is True
    assert times.arrived_at == _at(12)
    assert times.ready_at is None
    assert times.picked_up_at is None
    assert times.delivered_at is None
    assert set(times.durations.values()) == {None}


def test_earliest_occurrence_wins_regardless_of_input_order():
    history = _foody_history(
        ("Dispatching", (12, 30)),
        ("Delivered", (13, 0)),
        ("Dispatching", (12, 15)),
        ("Delivered", (12, 50)),
        ("Dispatched", (12, 35)),
    )

    times = reconcile(_at(12), list(reversed(history)), aliases=FOODY_ALIASES)

    assert times.ready_at == _at(12, 15)
    assert times.delivered_at == _at(12, 50)
    assert times.prep_time == 15.0


def test_missing_ready_falls_back_to_pickup():
    history = _foody_history(("Dispatched", (12, 25)), ("Delivered", (12, 45)))

    times = reconcile(_at(12), history, aliases=FOODY_ALIASES)

    assert times.ready_at == times.picked_up_at == _at(12, 25)
    assert times.prep_time == 25.0
    assert times.pickup_time == 0.0
    assert times.invalidated is False


def test_explicit_fields_fill_gaps_but_history_takes_precedence():
    history = _foody_history(("Dispatching", (12, 10)))
    explicit = {
        Milestone.READY: _at(12, 5),
        Milestone.PICKED_UP: _at(12, 20),
        Milestone.DELIVERED: None,
    }

    times = reconcile(_at(12), history, explicit, aliases=FOODY_ALIASES)

    assert times.ready_at == _at(12, 10)
    assert times.picked_up_at == _at(12, 20)
    assert times.delivered_at is None
    assert times.delivery_time is None
    assert times.total_time is None


def test_unknown_labels_are_ignored_and_missing_endpoints_give_none():
    history = _foody_history(("Visualized", (12, 2)), ("Accepted", (12, 3)))

    times = reconcile(_at(12), history, aliases=FOODY_ALIASES)

    assert times.ready_at is None
    assert times.durations == {
        "prep_time": None,
        "pickup_time": None,
        "delivery_time": None,
        "total_time": None,
    }
    assert times.invalidated is False


def test_history_from_payload_skips_unusable_rows():
    events = history_from_payload(
        [
            {"status": "Dispatching", "date": "2024-01-01T12:10:00Z"},
            {"status": "Dispatched"},
            {"date": "2024-01-01T12:20:00Z"},
            {"status": "Delivered", "date": "not-a-date"},
            "garbage",
        ]
    )

    assert events == [StatusEvent(label="Dispatching", at=_at(12, 10))]


@pytest.mark.parametrize(
    ("arrived_at", "expected_shift", "expected_workday"),
    [
        # 12:00Z is 09:00 local
        (_at(12), Shift.DAY, date(2024, 1, 1)),
        # 19:00Z is 16:00 local, the first night-shift hour
        (_at(19), Shift.NIGHT, date(2024, 1, 1)),
        # 01:30Z is 22:30 local on the previous business day
        (datetime(2024, 1, 2, 1, 30, tzinfo=timezone.utc), Shift.NIGHT, date(2024, 1, 1)),
    ],
)
def test_classify_workday_uses_fixed_offset(arrived_at, expected_shift, expected_workday):
    info = classify_workday(arrived_at)

    assert info.shift is expected_shift
    assert info.workday == expected_workday


def test_business_day_bounds_cover_the_local_day():
    start, end = business_day_bounds(date(2025, 12, 1))

    assert start.isoformat() == "2025-12-01T00:00:00-03:00"
    assert end.isoformat() == "2025-12-01T23:59:59-03:00"


def test_timestamp_helpers():
    assert parse_timestamp("2024-01-01T12:00:00Z") == _at(12)
    assert parse_timestamp(datetime(2024, 1, 1, 12)) == _at(12)
    assert parse_timestamp("yesterday") is None
    assert to_naive_utc(_at(12)) == datetime(2024, 1, 1, 12)
    assert diff_minutes(_at(12), _at(12, 7)) == 7.0
    assert diff_minutes(None, _at(12)) is None
    assert average_minutes([10.0, None, 20.0]) == 15.0
    assert format_minutes(None) == "-"
