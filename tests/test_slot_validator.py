import pytest

from booking_agent.services.availability import compute_available_ranges
from booking_agent.services.slot_validator import (
    OUTSIDE_AVAILABILITY, SLOT_OCCUPIED, TOO_CLOSE, check_slot, has_conflict, in_window,
    is_time_in_ranges, locate,
)
from booking_agent.services.timeutils import parse_hhmm

from conftest import booked, paris, window

NIGHT = [window("18:30", "02:00")]


@pytest.mark.parametrize("hhmm, expected", [
    ("01:00", True),
    ("18:30", True),
    ("23:59", True),
    ("02:00", True),   # extremo inclusivo
    ("03:00", False),
    ("17:00", False),
])
def test_midnight_window_membership(rules, hhmm, expected):
    assert is_time_in_ranges(parse_hhmm(hhmm), NIGHT, [], paris(16), rules) is expected


def test_rejection_reasons(rules):
    assert check_slot(parse_hhmm("03:00"), NIGHT, [], paris(16), rules).reason == TOO_CLOSE
    assert check_slot(parse_hhmm("17:00"), NIGHT, [], paris(16), rules).reason == OUTSIDE_AVAILABILITY
    assert check_slot(parse_hhmm("16:20"), NIGHT, [], paris(16), rules).reason == TOO_CLOSE
    taken = check_slot(parse_hhmm("19:30"), NIGHT, [booked("19:00", "20:00")], paris(16), rules)
    assert taken.reason == SLOT_OCCUPIED


def test_after_midnight_candidate_is_lifted():
    assert locate(parse_hhmm("01:00"), NIGHT) == 60 + 1440
    assert locate(parse_hhmm("19:00"), NIGHT) == 19 * 60
    assert locate(parse_hhmm("03:00"), NIGHT) is None


def test_in_window_plain():
    w = window("14:00", "16:00")
    assert in_window(parse_hhmm("14:00"), w)
    assert in_window(parse_hhmm("16:00"), w)
    assert not in_window(parse_hhmm("16:01"), w)


def test_lead_time_late_evening_allows_after_midnight(rules):
    # 23:50 ahora: 00:10 está dentro de los 30 min, 00:30 no
    assert not is_time_in_ranges(parse_hhmm("00:10"), NIGHT, [], paris(23, 50), rules)
    assert is_time_in_ranges(parse_hhmm("00:30"), NIGHT, [], paris(23, 50), rules)


def test_conflict_with_longer_duration():
    appts = [booked("20:00", "21:00")]
    # 19:00 es un punto libre pero 2h pisa la cita de las 20:00
    assert has_conflict(parse_hhmm("19:00"), 120, appts)
    assert not has_conflict(parse_hhmm("19:00"), 60, appts)
    assert not has_conflict(parse_hhmm("21:00"), 60, appts)


def test_conflict_across_midnight():
    appts = [booked("23:30", "00:30")]
    assert has_conflict(parse_hhmm("00:00"), 60, appts)
    assert has_conflict(parse_hhmm("23:00"), 60, appts)
    assert not has_conflict(parse_hhmm("00:30"), 60, appts)
    assert has_conflict(parse_hhmm("23:45"), 30, [booked("00:00", "01:00")])


def test_cancelled_never_conflicts():
    assert not has_conflict(parse_hhmm("20:00"), 60, [booked("20:00", "21:00", status="cancelled")])


@pytest.mark.parametrize("windows", [
    [window("00:30", "03:00"), window("22:00", "02:00")],
    [window("22:00", "02:00"), window("00:30", "03:00")],
])
def test_overlapping_windows_do_not_depend_on_order(rules, windows):
    now = paris(16)
    assert compute_available_ranges(windows, [], now, rules) == "22h-2h (jusqu'à demain matin)"
    # 01:00 cae en el rango ofrecido: se acepta sea cual sea el orden
    assert check_slot(parse_hhmm("01:00"), windows, [], now, rules) is None
    assert locate(parse_hhmm("01:00"), windows, floor=16 * 60 + 30) == 60 + 1440
    # 02:30 solo está en la ventana de madrugada, ya pasada
    assert check_slot(parse_hhmm("02:30"), windows, [], now, rules).reason == TOO_CLOSE
