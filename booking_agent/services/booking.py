# booking_agent/services/booking.py
"""
Pipeline de validación y creación de citas.

Orden estricto (corta en el primer fallo):
  1) formato  2) enums del catálogo  3) duplicado  4) solo hoy  5) slot + conflicto
Los argumentos vienen de una tool-call del modelo: se tratan como no confiables.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..config import BookingRules
from ..domain import BookedSlot, BookingRequest, CatalogEnums, Quote, Window
from ..errors import ClientInputError, ConflictError, DependencyError
from . import store
from .availability import active_appointments_on, compute_available_ranges, next_available_slot
from .pricing import compute_end_time, crosses_midnight, duration_to_minutes, format_amount, real_extras
from .slot_validator import OUTSIDE_AVAILABILITY, SLOT_OCCUPIED, TOO_CLOSE, check_slot, has_conflict
from .timeutils import format_clock, format_hhmm, is_hhmm, is_iso_date, parse_hhmm, to_local

logger = logging.getLogger(__name__)

# Devuelve el id de la cita duplicada, o None
DuplicateLookup = Callable[[int, date, str], Optional[int]]


@dataclass(frozen=True)
class BookingCheck:
    request: BookingRequest  # hora ya normalizada a HH:MM
    appointment_date: date
    start_minute: int
    duration_minutes: int


# -----------------------
# Mensajes para el cliente
# -----------------------
def _suggestion(reason: str, *, ranges: str = "", lead: int = 30, next_slot: Optional[str] = None,
                durations: Sequence[str] = ()) -> str:
    if reason == "invalid_format":
        return "Je n'ai pas bien compris l'heure. Pouvez-vous l'indiquer comme 19h ou 19h30 ?"
    if reason == "invalid_enum":
        return f"Cette option n'existe pas. Durées possibles : {', '.join(durations)}."
    if reason == "appointment_not_today":
        return "Désolé, les rendez-vous se prennent uniquement pour le jour même."
    if reason == TOO_CLOSE:
        base = f"Il me faut au moins {lead} minutes pour me préparer."
        if next_slot:
            return f"{base} À partir de {format_clock(parse_hhmm(next_slot))}, c'est possible ?"
        return base
    if reason == OUTSIDE_AVAILABILITY:
        return f"Je suis disponible {ranges}. À quelle heure pouvez-vous venir ?"
    if reason in (SLOT_OCCUPIED, "appointment_conflict"):
        return f"Ce créneau est déjà pris. Disponibilités : {ranges}. Pouvez-vous en choisir un autre ?"
    if reason == "duplicate":
        return "Votre rendez-vous est déjà confirmé."
    return "Je n'ai pas pu valider ce rendez-vous. Pouvez-vous reformuler ?"


# -----------------------
# Validación
# -----------------------
def _parse_request_date(value: str) -> date:
    if not is_iso_date(value):
        raise ValueError(value)
    return date.fromisoformat(value)


def validate_booking(
    request: BookingRequest,
    enums: CatalogEnums,
    conversation_id: int,
    *,
    windows: Sequence[Window],
    appointments: Sequence[BookedSlot],
    now: datetime,
    rules: BookingRules,
    find_duplicate: DuplicateLookup,
) -> BookingCheck:
    """
    Devuelve BookingCheck si la reserva puede persistirse.
    Lanza ClientInputError o ConflictError con `reason` y `suggestion`.
    """
    # 1) Formato
    try:
        day = _parse_request_date(request.appointment_date)
    except ValueError:
        raise ClientInputError("invalid_format", f"fecha inválida: {request.appointment_date!r}",
                               _suggestion("invalid_format"))
    if not is_hhmm(request.appointment_time):
        raise ClientInputError("invalid_format", f"hora inválida: {request.appointment_time!r}",
                               _suggestion("invalid_format"))
    start_minute = parse_hhmm(request.appointment_time)
    start_time = format_hhmm(start_minute)

    # 2) Enums: frontera de seguridad contra valores inventados por el modelo
    if request.duration not in enums.durations:
        logger.warning("Duración fuera de catálogo (alucinación): %r", request.duration)
        raise ClientInputError("invalid_enum", f"duración {request.duration!r} no está en {list(enums.durations)}",
                               _suggestion("invalid_enum", durations=enums.durations))
    for extra in real_extras(request.extras):
        if extra not in enums.extras:
            logger.warning("Extra fuera de catálogo (alucinación): %r", extra)
            raise ClientInputError("invalid_enum", f"extra {extra!r} no está en {list(enums.extras)}",
                                   _suggestion("invalid_enum", durations=enums.durations))

    # 3) Duplicado
    existing_id = find_duplicate(conversation_id, day, start_time)
    if existing_id is not None:
        logger.info("Duplicado detectado: conversation=%s %s %s -> appt_id=%s",
                    conversation_id, day, start_time, existing_id)
        raise ConflictError("duplicate", "la cita ya existe", _suggestion("duplicate"),
                            appointment_id=existing_id)

    # 4) Solo hoy
    moment = to_local(now, rules.timezone)
    if day != moment.date:
        raise ClientInputError("appointment_not_today", f"{day} != {moment.date}",
                               _suggestion("appointment_not_today"))

    # 5) Slot
    duration_minutes = duration_to_minutes(request.duration)
    rejection = check_slot(start_minute, windows, appointments, now, rules)
    if rejection is None and has_conflict(start_minute, duration_minutes,
                                          active_appointments_on(appointments, moment.date)):
        reason = "appointment_conflict"
    else:
        reason = rejection.reason if rejection else None

    if reason:
        ranges = compute_available_ranges(windows, appointments, now, rules)
        suggestion = _suggestion(
            reason,
            ranges=ranges,
            lead=rules.lead_time_minutes,
            next_slot=next_available_slot(windows, appointments, now, rules),
        )
        detail = f"{start_time} rechazada ({reason}); dispo: {ranges}"
        if reason in (SLOT_OCCUPIED, "appointment_conflict"):
            raise ConflictError(reason, detail, suggestion)
        raise ClientInputError(reason, detail, suggestion)

    normalized = BookingRequest(
        duration=request.duration,
        extras=tuple(real_extras(request.extras)),
        appointment_date=day.isoformat(),
        appointment_time=start_time,
    )
    return BookingCheck(request=normalized, appointment_date=day,
                        start_minute=start_minute, duration_minutes=duration_minutes)


def duplicate_lookup(db: Session) -> DuplicateLookup:
    """Adaptador de store.find_duplicate. Error de BD = no duplicado (la constraint respalda)."""
    def _lookup(conversation_id: int, day: date, start_time: str) -> Optional[int]:
        try:
            appt = store.find_duplicate(db, conversation_id, day, start_time)
        except SQLAlchemyError as e:
            logger.error("Chequeo de duplicados falló, se continúa: %s", e)
            db.rollback()
            return None
        return appt.id if appt else None
    return _lookup


# -----------------------
# Creación
# -----------------------
def create_appointment(
    db: Session,
    check: BookingCheck,
    quote: Quote,
    *,
    provider_id: int,
    conversation_id: int,
    contact_phone: str,
    contact_name: Optional[str] = None,
) -> models.Appointment:
    req = check.request
    appt = models.Appointment(
        provider_id=provider_id,
        conversation_id=conversation_id,
        contact_phone=contact_phone,
        contact_name=contact_name,
        appointment_date=check.appointment_date,
        start_time=req.appointment_time,
        end_time=compute_end_time(req.appointment_time, check.duration_minutes),
        duration_minutes=check.duration_minutes,
        service=req.duration,
        extras=[{"name": n, "price": p} for n, p in quote.extra_prices],
        base_price=quote.base,
        extras_total=quote.extras_total,
        total_price=quote.total,
        status=models.AppointmentStatus.confirmed,
    )
    db.add(appt)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        existing = store.find_duplicate(db, conversation_id, check.appointment_date, req.appointment_time)
        logger.info("Constraint única evitó duplicado: conversation=%s %s %s",
                    conversation_id, check.appointment_date, req.appointment_time)
        raise ConflictError("duplicate", str(e.orig), _suggestion("duplicate"),
                            appointment_id=existing.id if existing else None) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Insert de cita falló: %s", e)
        # No se reintenta a ciegas: puede haberse aplicado parcialmente
        raise DependencyError("appointment_insert_failed", str(e), retryable=False) from e
    db.refresh(appt)
    if crosses_midnight(req.appointment_time, check.duration_minutes):
        logger.info("Cita termina pasada la medianoche: appt_id=%s fin=%s", appt.id, appt.end_time)
    logger.info("Cita creada: appt_id=%s conversation=%s %s %s-%s total=%s",
                appt.id, conversation_id, appt.appointment_date, appt.start_time, appt.end_time, appt.total_price)
    return appt


def build_confirmation_message(start_time: str, duration: str, quote: Quote, address: str) -> str:
    """
    Ej: "C'est confirmé ! Aujourd'hui 19h, 1h (CHF 150) + Massage (+CHF 50) = CHF 200."
    seguido de la dirección.
    """
    breakdown = f"{duration} (CHF {format_amount(quote.base)})"
    if quote.extra_prices:
        breakdown += " + " + " + ".join(f"{n} (+CHF {format_amount(p)})" for n, p in quote.extra_prices)
    msg = (
        f"C'est confirmé ! Aujourd'hui {format_clock(parse_hhmm(start_time))}, "
        f"{breakdown} = CHF {format_amount(quote.total)}."
    )
    if address:
        msg += f"\n\nAdresse : {address}"
    return msg
