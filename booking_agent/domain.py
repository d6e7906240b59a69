# booking_agent/domain.py
"""
Valores de dominio inmutables que consumen el motor de disponibilidad,
el validador de slots y el pipeline de reservas. No dependen del ORM:
services/store.py traduce filas de BD a estas estructuras.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Window:
    """Ventana semanal recurrente. end_minute <= start_minute cruza medianoche."""
    day_of_week: int  # 0 = domingo
    start_minute: int
    end_minute: int


@dataclass(frozen=True)
class BookedSlot:
    appointment_date: date
    start_minute: int
    end_minute: int
    status: str = "confirmed"
    appointment_id: Optional[int] = None


@dataclass(frozen=True)
class LocalMoment:
    """Instante ya convertido a la zona de operación."""
    date: date
    day_of_week: int  # 0 = domingo
    hour: int
    minute: int

    @property
    def minute_of_day(self) -> int:
        return self.hour * 60 + self.minute


@dataclass(frozen=True)
class CatalogEnums:
    """Valores que el modelo puede elegir; derivados del catálogo real."""
    durations: tuple[str, ...] = ()
    extras: tuple[str, ...] = ()


@dataclass(frozen=True)
class PriceCatalog:
    durations: dict[str, float] = field(default_factory=dict)
    extras: dict[str, float] = field(default_factory=dict)

    def enums(self) -> CatalogEnums:
        return CatalogEnums(durations=tuple(self.durations), extras=tuple(self.extras))


@dataclass(frozen=True)
class BookingRequest:
    """Los cuatro campos que devuelve la tool; siempre input no confiable."""
    duration: str
    extras: tuple[str, ...]
    appointment_date: str  # YYYY-MM-DD
    appointment_time: str  # HH:MM


@dataclass(frozen=True)
class Quote:
    base: float
    extras_total: float
    total: float
    extra_prices: tuple[tuple[str, float], ...] = ()
