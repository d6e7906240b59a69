# booking_agent/services/store.py
"""
Contrato de lectura/escritura con la BD. Traduce filas ORM a valores de dominio
para que el motor y el pipeline no toquen SQLAlchemy.
"""
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..domain import BookedSlot, PriceCatalog, Window
from ..errors import DependencyError
from .pricing import build_price_catalog
from .timeutils import parse_hhmm

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class AppointmentSnapshot:
    id: int
    appointment_date: date
    start_time: str
    end_time: str
    service: str
    total_price: float
    client_arrived: bool


@dataclass(frozen=True)
class ProviderData:
    provider_id: int
    name: str
    address: str
    windows: tuple[Window, ...] = ()
    appointments: tuple[BookedSlot, ...] = ()
    catalog: PriceCatalog = field(default_factory=PriceCatalog)


@dataclass(frozen=True)
class ConversationData:
    conversation_id: int
    contact_phone: str
    contact_name: Optional[str]
    history: tuple[dict, ...] = ()
    today_appointment: Optional[AppointmentSnapshot] = None


# -----------------------
# Conversaciones y mensajes
# -----------------------
def get_provider_by_number(db: Session, number: str) -> Optional[models.Provider]:
    stmt = select(models.Provider).where(
        models.Provider.whatsapp_number == number,
        models.Provider.is_active.is_(True),
    )
    return db.execute(stmt).scalar_one_or_none()


def get_or_create_conversation(db: Session, provider_id: int, contact_phone: str,
                               contact_name: Optional[str] = None) -> models.Conversation:
    stmt = select(models.Conversation).where(
        models.Conversation.provider_id == provider_id,
        models.Conversation.contact_phone == contact_phone,
    )
    conv = db.execute(stmt).scalar_one_or_none()
    if conv:
        if contact_name and not conv.contact_name:
            conv.contact_name = contact_name
            db.commit()
        return conv
    conv = models.Conversation(provider_id=provider_id, contact_phone=contact_phone, contact_name=contact_name)
    db.add(conv); db.commit(); db.refresh(conv)
    return conv


def save_message(db: Session, conversation_id: int, direction: models.Direction, content: str) -> models.Message:
    msg = models.Message(conversation_id=conversation_id, direction=direction, content=content or "")
    db.add(msg); db.commit(); db.refresh(msg)
    return msg


def recent_messages(db: Session, conversation_id: int, limit: int) -> list[dict]:
    """Últimos `limit` mensajes en orden cronológico, en formato chat de OpenAI."""
    stmt = (
        select(models.Message)
        .where(models.Message.conversation_id == conversation_id)
        .order_by(models.Message.created_at.desc(), models.Message.id.desc())
        .limit(limit)
    )
    rows = list(db.execute(stmt).scalars())
    rows.reverse()
    return [
        {"role": "user" if m.direction == models.Direction.incoming else "assistant", "content": m.content}
        for m in rows
    ]


# -----------------------
# Proveedor: ventanas, catálogo, citas
# -----------------------
def load_windows(db: Session, provider_id: int) -> list[Window]:
    stmt = select(models.AvailabilityWindow).where(
        models.AvailabilityWindow.provider_id == provider_id,
        models.AvailabilityWindow.is_active.is_(True),
    )
    return [
        Window(day_of_week=w.day_of_week, start_minute=parse_hhmm(w.start_time), end_minute=parse_hhmm(w.end_time))
        for w in db.execute(stmt).scalars()
    ]


def load_catalog(db: Session, provider_id: int) -> PriceCatalog:
    rates = db.execute(
        select(models.RateOption).where(models.RateOption.provider_id == provider_id).order_by(models.RateOption.id)
    ).scalars()
    extras = db.execute(
        select(models.ExtraOption).where(models.ExtraOption.provider_id == provider_id).order_by(models.ExtraOption.id)
    ).scalars()
    return build_price_catalog(
        [(r.duration, r.price) for r in rates],
        [(e.name, e.price) for e in extras],
    )


def load_appointments(db: Session, provider_id: int, from_date: date) -> list[BookedSlot]:
    """Citas de hoy y próximas (no canceladas) del proveedor."""
    stmt = select(models.Appointment).where(
        models.Appointment.provider_id == provider_id,
        models.Appointment.appointment_date >= from_date,
        models.Appointment.status != models.AppointmentStatus.cancelled,
    )
    return [
        BookedSlot(
            appointment_date=a.appointment_date,
            start_minute=parse_hhmm(a.start_time),
            end_minute=parse_hhmm(a.end_time),
            status=a.status.value,
            appointment_id=a.id,
        )
        for a in db.execute(stmt).scalars()
    ]


def appointments_on(db: Session, provider_id: int, day: date) -> list[models.Appointment]:
    stmt = (
        select(models.Appointment)
        .where(models.Appointment.provider_id == provider_id, models.Appointment.appointment_date == day)
        .order_by(models.Appointment.start_time.asc())
    )
    return list(db.execute(stmt).scalars())


def find_duplicate(db: Session, conversation_id: int, day: date, start_time: str) -> Optional[models.Appointment]:
    stmt = select(models.Appointment).where(
        models.Appointment.conversation_id == conversation_id,
        models.Appointment.appointment_date == day,
        models.Appointment.start_time == start_time,
        models.Appointment.status.in_(models.ACTIVE_STATUSES),
    )
    return db.execute(stmt).scalars().first()


def confirmed_appointment_today(db: Session, conversation_id: int, today: date) -> Optional[models.Appointment]:
    stmt = (
        select(models.Appointment)
        .where(
            models.Appointment.conversation_id == conversation_id,
            models.Appointment.appointment_date == today,
            models.Appointment.status == models.AppointmentStatus.confirmed,
        )
        .order_by(models.Appointment.created_at.desc())
    )
    return db.execute(stmt).scalars().first()


def mark_client_arrived(db: Session, appointment_id: int) -> bool:
    appt = db.get(models.Appointment, appointment_id)
    if not appt:
        return False
    if not appt.client_arrived:
        appt.client_arrived = True
        db.commit()
    return True


def snapshot(appt: models.Appointment) -> AppointmentSnapshot:
    return AppointmentSnapshot(
        id=appt.id,
        appointment_date=appt.appointment_date,
        start_time=appt.start_time,
        end_time=appt.end_time,
        service=appt.service,
        total_price=float(appt.total_price),
        client_arrived=appt.client_arrived,
    )


# -----------------------
# Carga concurrente del contexto del evento
# -----------------------
def fetch_provider_data(session_factory: SessionFactory, provider_id: int, today: date) -> ProviderData:
    db = session_factory()
    try:
        provider = db.get(models.Provider, provider_id)
        if provider is None:
            raise DependencyError("provider_not_found", f"provider_id={provider_id}", retryable=False)
        return ProviderData(
            provider_id=provider.id,
            name=provider.name,
            address=provider.address or "",
            windows=tuple(load_windows(db, provider_id)),
            appointments=tuple(load_appointments(db, provider_id, today)),
            catalog=load_catalog(db, provider_id),
        )
    finally:
        db.close()


def fetch_conversation_data(session_factory: SessionFactory, conversation_id: int, today: date,
                            history_limit: int) -> ConversationData:
    db = session_factory()
    try:
        conv = db.get(models.Conversation, conversation_id)
        if conv is None:
            raise DependencyError("conversation_not_found", f"conversation_id={conversation_id}", retryable=False)
        appt = confirmed_appointment_today(db, conversation_id, today)
        return ConversationData(
            conversation_id=conv.id,
            contact_phone=conv.contact_phone,
            contact_name=conv.contact_name,
            history=tuple(recent_messages(db, conversation_id, history_limit)),
            today_appointment=snapshot(appt) if appt else None,
        )
    finally:
        db.close()


def load_event_context(
    session_factory: SessionFactory,
    provider_id: int,
    conversation_id: int,
    today: date,
    history_limit: int,
    timeout: float,
) -> tuple[ProviderData, ConversationData]:
    """
    Lee proveedor y conversación en paralelo (una sesión por hilo).
    Timeout o error de BD -> DependencyError reintentable.
    """
    pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ctx")
    try:
        f_provider = pool.submit(fetch_provider_data, session_factory, provider_id, today)
        f_conv = pool.submit(fetch_conversation_data, session_factory, conversation_id, today, history_limit)
        done, pending = wait([f_provider, f_conv], timeout=timeout)
        if pending:
            logger.error("Timeout (%ss) cargando contexto: provider=%s conversation=%s",
                         timeout, provider_id, conversation_id)
            raise DependencyError("data_fetch_timeout", f"timeout={timeout}s")
        try:
            return f_provider.result(), f_conv.result()
        except SQLAlchemyError as e:
            logger.exception("Error de BD cargando contexto: %s", e)
            raise DependencyError("data_fetch_failed", str(e)) from e
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
