# booking_agent/services/slot_validator.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from ..config import BookingRules
from ..domain import BookedSlot, Window
from .availability import (
    active_appointments_on, build_occupied_minutes, min_allowed_minute, windows_for_day,
)
from .timeutils import MINUTES_PER_DAY, extend, fold, to_local

logger = logging.getLogger(__name__)

TOO_CLOSE = "too_close_to_current_time"
SLOT_OCCUPIED = "slot_occupied"
OUTSIDE_AVAILABILITY = "time_not_in_available_ranges"


@dataclass(frozen=True)
class SlotRejection:
    reason: str
    candidate_minute: int


def in_window(t: int, window: Window) -> bool:
    """Regla inclusiva y consciente de medianoche."""
    start, end = window.start_minute, window.end_minute
    if end <= start:
        return t >= start or t <= end
    return start <= t <= end


def locate(t: int, windows_today: Sequence[Window], floor: Optional[int] = None) -> Optional[int]:
    """
    Minuto extendido del candidato. Si cae en la parte posterior a medianoche
    de una ventana que cruza, se eleva a t + 1440. None si no está en ninguna.

    Se revisan todas las ventanas: con `floor`, gana la menor posición >= floor,
    así el resultado no depende del orden de las filas.
    """
    positions = []
    for w in windows_today:
        if not in_window(t, w):
            continue
        if w.end_minute <= w.start_minute and t <= w.end_minute:
            positions.append(t + MINUTES_PER_DAY)
        else:
            positions.append(t)
    if not positions:
        return None
    if floor is not None:
        reachable = [p for p in positions if p >= floor]
        if reachable:
            return min(reachable)
    return positions[0]


def check_slot(
    candidate_minute: int,
    windows: Sequence[Window],
    appointments: Sequence[BookedSlot],
    now: datetime,
    rules: BookingRules,
) -> Optional[SlotRejection]:
    """None si el punto es reservable; si no, el primer motivo de rechazo."""
    moment = to_local(now, rules.timezone)
    today = windows_for_day(windows, moment.day_of_week)
    floor = min_allowed_minute(moment, rules)
    located = locate(candidate_minute, today, floor)
    extended = located if located is not None else candidate_minute

    if extended < floor:
        return SlotRejection(TOO_CLOSE, candidate_minute)

    occupied = build_occupied_minutes(active_appointments_on(appointments, moment.date))
    if fold(candidate_minute) in occupied:
        return SlotRejection(SLOT_OCCUPIED, candidate_minute)

    if located is None:
        return SlotRejection(OUTSIDE_AVAILABILITY, candidate_minute)
    return None


def is_time_in_ranges(
    candidate_minute: int,
    windows: Sequence[Window],
    appointments: Sequence[BookedSlot],
    now: datetime,
    rules: BookingRules,
) -> bool:
    rejection = check_slot(candidate_minute, windows, appointments, now, rules)
    if rejection:
        logger.debug("Slot %s rechazado: %s", candidate_minute, rejection.reason)
    return rejection is None


def has_conflict(candidate_start: int, duration_minutes: int, appointments: Sequence[BookedSlot]) -> bool:
    """
    Solapamiento real [start, start+duration) contra cada cita, en el círculo de 24h.
    Independiente de las ventanas: una hora válida puede chocar con otra cita más larga.
    """
    start = fold(candidate_start)
    end = start + duration_minutes
    for appt in appointments:
        if appt.status == "cancelled":
            continue
        other_start, other_end = extend(appt.start_minute, appt.end_minute)
        for shift in (-MINUTES_PER_DAY, 0, MINUTES_PER_DAY):
            if start < other_end + shift and end > other_start + shift:
                return True
    return False
