# booking_agent/services/timeutils.py
"""
Normalización horaria. Todo lo demás consume LocalMoment y minutos del día.

Espacio extendido: cualquier intervalo que pueda cruzar medianoche se trabaja
en 0..2879 y solo se pliega (mod 1440) para ocupación o para mostrarlo.
"""
from __future__ import annotations
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from ..domain import LocalMoment

MINUTES_PER_DAY = 24 * 60

_HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Índice 0 = domingo
DAY_NAMES = ("dimanche", "lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi")


def to_local(now: datetime, tz_name: str) -> LocalMoment:
    """Convierte un instante a fecha/día/hora/minuto locales. Naive = UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name))
    return LocalMoment(
        date=local.date(),
        day_of_week=(local.weekday() + 1) % 7,
        hour=local.hour,
        minute=local.minute,
    )


def is_hhmm(value: str) -> bool:
    return bool(_HHMM_RE.match(value or ""))


def is_iso_date(value: str) -> bool:
    return bool(_DATE_RE.match(value or ""))


def parse_hhmm(value: str) -> int:
    """'18:30' -> 1110. Acepta 'HH:MM' o 'HH:MM:SS' (columnas TIME de Postgres)."""
    parts = (value or "").strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"hora inválida: {value!r}")
    h, m = int(parts[0]), int(parts[1])
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ValueError(f"hora fuera de rango: {value!r}")
    return h * 60 + m


def fold(minute: int) -> int:
    return minute % MINUTES_PER_DAY


def format_hhmm(minute: int) -> str:
    m = fold(minute)
    return f"{m // 60:02d}:{m % 60:02d}"


def extend(start: int, end: int) -> tuple[int, int]:
    """Único helper de normalización: end <= start significa 'termina mañana'."""
    if end <= start:
        end += MINUTES_PER_DAY
    return start, end


def format_clock(minute: int) -> str:
    """1110 -> '18h30', 1560 -> '2h'."""
    m = fold(minute)
    h, mm = divmod(m, 60)
    return f"{h}h" if mm == 0 else f"{h}h{mm:02d}"


def parse_clock(value: str) -> int:
    """Inverso de format_clock: '18h30' -> 1110, '2h' -> 120."""
    m = re.fullmatch(r"\s*(\d{1,2})h(\d{2})?\s*", value or "")
    if not m:
        raise ValueError(f"hora inválida: {value!r}")
    return int(m.group(1)) * 60 + int(m.group(2) or 0)
