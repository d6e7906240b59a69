# booking_agent/services/pricing.py
"""
Precios calculados siempre del lado servidor. Un precio faltante es un error
de configuración, nunca una reserva gratis o con precio parcial.
"""
from __future__ import annotations
import logging
import re
from typing import Iterable

from ..domain import PriceCatalog, Quote
from ..errors import ConfigurationError
from .timeutils import MINUTES_PER_DAY, format_hhmm, parse_hhmm

logger = logging.getLogger(__name__)

# El modelo usa "aucun" para "sin extras"; aceptamos también "none"
NO_EXTRA_SENTINELS = frozenset({"aucun", "none"})

_DURATION_RE = re.compile(r"^\s*(?:(\d+)h(\d{1,2})?(?:min)?|(\d+)\s*min)\s*$", re.IGNORECASE)


def build_price_catalog(rates: Iterable[tuple[str, float]], extras: Iterable[tuple[str, float]]) -> PriceCatalog:
    return PriceCatalog(
        durations={label: float(price) for label, price in rates},
        extras={name: float(price) for name, price in extras},
    )


def real_extras(selected: Iterable[str]) -> list[str]:
    return [e for e in selected if e and e.strip().lower() not in NO_EXTRA_SENTINELS]


def duration_to_minutes(duration: str) -> int:
    """'30min' -> 30, '1h' -> 60, '1h30' -> 90."""
    m = _DURATION_RE.match(duration or "")
    if not m:
        raise ConfigurationError(f"Formato de duración inválido: {duration!r}")
    if m.group(3) is not None:
        return int(m.group(3))
    return int(m.group(1)) * 60 + int(m.group(2) or 0)


def price(duration: str, extras: Iterable[str], catalog: PriceCatalog) -> Quote:
    base = catalog.durations.get(duration)
    if base is None:
        raise ConfigurationError(f"Precio faltante para la duración {duration!r}")

    extra_prices: list[tuple[str, float]] = []
    for name in real_extras(extras):
        p = catalog.extras.get(name)
        if p is None:
            raise ConfigurationError(f"Precio faltante para el extra {name!r}")
        extra_prices.append((name, p))

    extras_total = sum(p for _, p in extra_prices)
    return Quote(
        base=base,
        extras_total=extras_total,
        total=base + extras_total,
        extra_prices=tuple(extra_prices),
    )


def compute_end_time(start_time: str, duration_minutes: int) -> str:
    """Hora de fin 'HH:MM'; envuelve en silencio (23:30 + 90 -> 01:00)."""
    return format_hhmm(parse_hhmm(start_time) + duration_minutes)


def crosses_midnight(start_time: str, duration_minutes: int) -> bool:
    return parse_hhmm(start_time) + duration_minutes > MINUTES_PER_DAY


def format_amount(value: float) -> str:
    """150.0 -> '150', 72.5 -> '72.50'."""
    return f"{value:.0f}" if float(value).is_integer() else f"{value:.2f}"
