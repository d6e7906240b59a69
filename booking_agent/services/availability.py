# booking_agent/services/availability.py
"""
Motor de disponibilidad del día.

Calcula los rangos todavía reservables HOY a partir de las ventanas semanales,
las citas existentes y "ahora". Es una función pura de sus entradas: las reglas
(zona y anticipación mínima) llegan como BookingRules.

Ejemplo de salida: "14h-16h, 18h30-2h (jusqu'à demain matin)".
"""
from __future__ import annotations
from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from ..config import BookingRules
from ..domain import BookedSlot, LocalMoment, Window
from .timeutils import (
    MINUTES_PER_DAY, extend, fold, format_clock, format_hhmm, parse_clock, to_local,
)

# Centinelas: nunca son un rango válido
NO_AVAILABILITY_CONFIGURED = "Aucune dispo configurée"
NO_AVAILABILITY_TODAY = "Pas dispo aujourd'hui"
NO_SLOTS_LEFT = "Plus de créneaux dispo aujourd'hui"
SENTINELS = frozenset({NO_AVAILABILITY_CONFIGURED, NO_AVAILABILITY_TODAY, NO_SLOTS_LEFT})

MIDNIGHT_MARKER = " (jusqu'à demain matin)"


def is_bookable(ranges: str) -> bool:
    return bool(ranges) and ranges not in SENTINELS


def windows_for_day(windows: Iterable[Window], day_of_week: int) -> list[Window]:
    return [w for w in windows if w.day_of_week == day_of_week]


def active_appointments_on(appointments: Iterable[BookedSlot], day: date) -> list[BookedSlot]:
    return [a for a in appointments if a.appointment_date == day and a.status != "cancelled"]


def build_occupied_minutes(appointments: Iterable[BookedSlot]) -> set[int]:
    """Minutos 0..1439 cubiertos por alguna cita. Las que cruzan medianoche se pliegan."""
    occupied: set[int] = set()
    for appt in appointments:
        start, end = extend(appt.start_minute, appt.end_minute)
        occupied.update(fold(m) for m in range(start, end))
    return occupied


def min_allowed_minute(moment: LocalMoment, rules: BookingRules) -> int:
    return moment.minute_of_day + rules.lead_time_minutes


def _free_minutes(windows_today: Sequence[Window], occupied: set[int], floor: int) -> list[int]:
    # Comparación en espacio extendido: m y floor viven en 0..2879
    free: set[int] = set()
    for w in windows_today:
        start, end = extend(w.start_minute, w.end_minute)
        for m in range(start, end):
            if m >= floor and fold(m) not in occupied:
                free.add(m)
    return sorted(free)


def _runs(minutes: Sequence[int]) -> list[tuple[int, int]]:
    """Agrupa minutos consecutivos en rangos semiabiertos [a, b)."""
    runs: list[tuple[int, int]] = []
    for m in minutes:
        if runs and runs[-1][1] == m:
            runs[-1] = (runs[-1][0], m + 1)
        else:
            runs.append((m, m + 1))
    return runs


def compute_free_runs(
    windows: Sequence[Window],
    appointments: Sequence[BookedSlot],
    now: datetime,
    rules: BookingRules,
) -> list[tuple[int, int]]:
    """Rangos libres de hoy en espacio extendido. Lista vacía si no hay nada."""
    moment = to_local(now, rules.timezone)
    today = windows_for_day(windows, moment.day_of_week)
    if not today:
        return []
    occupied = build_occupied_minutes(active_appointments_on(appointments, moment.date))
    return _runs(_free_minutes(today, occupied, min_allowed_minute(moment, rules)))


def format_time_range(start: int, end: int) -> str:
    text = f"{format_clock(start)}-{format_clock(end)}"
    return text + MIDNIGHT_MARKER if end > MINUTES_PER_DAY else text


def compute_available_ranges(
    windows: Sequence[Window],
    appointments: Sequence[BookedSlot],
    now: datetime,
    rules: BookingRules,
) -> str:
    if not windows:
        return NO_AVAILABILITY_CONFIGURED
    moment = to_local(now, rules.timezone)
    if not windows_for_day(windows, moment.day_of_week):
        return NO_AVAILABILITY_TODAY
    runs = compute_free_runs(windows, appointments, now, rules)
    if not runs:
        return NO_SLOTS_LEFT
    return ", ".join(format_time_range(a, b) for a, b in runs)


def next_available_slot(
    windows: Sequence[Window],
    appointments: Sequence[BookedSlot],
    now: datetime,
    rules: BookingRules,
) -> Optional[str]:
    """Primer minuto reservable como 'HH:MM', o None."""
    runs = compute_free_runs(windows, appointments, now, rules)
    return format_hhmm(runs[0][0]) if runs else None


def parse_ranges(ranges: str) -> list[tuple[int, int]]:
    """Inverso de compute_available_ranges. Los centinelas dan lista vacía."""
    if not is_bookable(ranges):
        return []
    out: list[tuple[int, int]] = []
    for chunk in ranges.split(","):
        after_midnight = MIDNIGHT_MARKER.strip() in chunk
        chunk = chunk.replace(MIDNIGHT_MARKER.strip(), "").strip()
        left, right = chunk.split("-", 1)
        start, end = extend(parse_clock(left), parse_clock(right))
        if after_midnight and end <= MINUTES_PER_DAY:
            # rango que empieza ya pasada la medianoche ("0h20-2h (...)")
            start, end = start + MINUTES_PER_DAY, end + MINUTES_PER_DAY
        out.append((start, end))
    return out
