from booking_agent.services.availability import (
    NO_AVAILABILITY_CONFIGURED, NO_AVAILABILITY_TODAY, NO_SLOTS_LEFT,
    build_occupied_minutes, compute_available_ranges, format_time_range, is_bookable,
    next_available_slot, parse_ranges,
)
from booking_agent.services.timeutils import fold, to_local

from conftest import booked, paris, window


def test_midnight_crossing_window_is_one_range(rules):
    ranges = compute_available_ranges([window("18:30", "02:00")], [], paris(16), rules)
    assert ranges == "18h30-2h (jusqu'à demain matin)"


def test_two_windows_and_marker(rules):
    windows = [window("14:00", "16:00"), window("18:30", "02:00")]
    ranges = compute_available_ranges(windows, [], paris(13), rules)
    assert ranges == "14h-16h, 18h30-2h (jusqu'à demain matin)"


def test_lead_time_trims_start(rules):
    ranges = compute_available_ranges([window("14:00", "16:00")], [], paris(14, 10), rules)
    assert ranges == "14h40-16h"


def test_lead_time_applies_in_extended_space_after_midnight(rules):
    # 23:50 + 30 min -> primer minuto libre 00:20 del día siguiente
    ranges = compute_available_ranges([window("22:00", "02:00")], [], paris(23, 50), rules)
    assert ranges == "0h20-2h (jusqu'à demain matin)"


def test_appointment_splits_window(rules):
    ranges = compute_available_ranges(
        [window("14:00", "18:00")], [booked("15:00", "16:00")], paris(12), rules,
    )
    assert ranges == "14h-15h, 16h-18h"


def test_cancelled_and_other_days_do_not_block(rules):
    from datetime import date
    appts = [
        booked("15:00", "16:00", status="cancelled"),
        booked("15:00", "16:00", day=date(2025, 1, 16)),
    ]
    ranges = compute_available_ranges([window("14:00", "18:00")], appts, paris(12), rules)
    assert ranges == "14h-18h"


def test_appointment_crossing_midnight_blocks_both_sides(rules):
    occupied = build_occupied_minutes([booked("23:30", "00:30")])
    assert 23 * 60 + 30 in occupied
    assert 15 in occupied
    assert 30 not in occupied


def test_sentinels_are_distinct_and_not_bookable(rules):
    none_configured = compute_available_ranges([], [], paris(12), rules)
    none_today = compute_available_ranges([window("14:00", "16:00", dow=1)], [], paris(12), rules)
    consumed = compute_available_ranges([window("10:00", "11:00")], [], paris(12), rules)

    assert none_configured == NO_AVAILABILITY_CONFIGURED
    assert none_today == NO_AVAILABILITY_TODAY
    assert consumed == NO_SLOTS_LEFT
    assert len({none_configured, none_today, consumed}) == 3
    assert not any(is_bookable(s) for s in (none_configured, none_today, consumed))
    assert parse_ranges(consumed) == []


def test_format_time_range():
    assert format_time_range(840, 960) == "14h-16h"
    assert format_time_range(1110, 1560) == "18h30-2h (jusqu'à demain matin)"
    assert format_time_range(1320, 1440) == "22h-0h"


def test_next_available_slot(rules):
    windows = [window("14:00", "16:00"), window("18:30", "02:00")]
    assert next_available_slot(windows, [], paris(15, 45), rules) == "18:30"
    assert next_available_slot(windows, [], paris(14, 10), rules) == "14:40"


def test_ranges_name_only_free_minutes_inside_windows(rules):
    windows = [window("09:00", "12:00"), window("14:00", "16:00"), window("20:00", "03:30")]
    appts = [booked("14:30", "15:15"), booked("23:00", "01:00"), booked("10:00", "10:30")]
    for now in (paris(8), paris(10, 5), paris(15), paris(21, 40)):
        ranges = compute_available_ranges(windows, appts, now, rules)
        occupied = build_occupied_minutes(appts)
        floor = to_local(now, rules.timezone).minute_of_day + rules.lead_time_minutes
        for start, end in parse_ranges(ranges):
            for m in range(start, end):
                assert m >= floor
                assert fold(m) not in occupied
                assert any(
                    w.start_minute <= m < (w.end_minute if w.end_minute > w.start_minute else w.end_minute + 1440)
                    for w in windows
                )
