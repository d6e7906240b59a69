# booking_agent/models.py
from typing import Optional
from datetime import date, datetime, timezone
import enum

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    JSON, Boolean, Date, DateTime, Enum, ForeignKey, Index, Integer, Numeric,
    SmallInteger, String, Text, UniqueConstraint,
)

from .database import Base


def _utc_naive_now() -> datetime:
    """UTC naive para columnas TIMESTAMP WITHOUT TIME ZONE."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"
    completed = "completed"


# Estados que ocupan agenda y cuentan como duplicado
ACTIVE_STATUSES = (AppointmentStatus.pending, AppointmentStatus.confirmed)


class Direction(str, enum.Enum):
    incoming = "incoming"
    outgoing = "outgoing"


class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Número de WhatsApp del negocio (campo "To" del webhook)
    whatsapp_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    rates = relationship("RateOption", back_populates="provider", cascade="all, delete-orphan")
    extras = relationship("ExtraOption", back_populates="provider", cascade="all, delete-orphan")
    windows = relationship("AvailabilityWindow", back_populates="provider", cascade="all, delete-orphan")


class RateOption(Base):
    __tablename__ = "rate_options"
    __table_args__ = (
        UniqueConstraint("provider_id", "duration", name="uq_rate_options_provider_duration"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    duration: Mapped[str] = mapped_column(String(20), nullable=False)  # "30min", "1h", "1h30"
    price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)

    provider = relationship("Provider", back_populates="rates")


class ExtraOption(Base):
    __tablename__ = "extra_options"
    __table_args__ = (
        UniqueConstraint("provider_id", "name", name="uq_extra_options_provider_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)

    provider = relationship("Provider", back_populates="extras")


class AvailabilityWindow(Base):
    __tablename__ = "availability_windows"
    __table_args__ = (
        Index("ix_availability_provider_day", "provider_id", "day_of_week"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    # 0 = domingo ... 6 = sábado
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)    # HH:MM, <= start cruza medianoche
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    provider = relationship("Provider", back_populates="windows")


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("provider_id", "contact_phone", name="uq_conversations_provider_contact"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    contact_phone: Mapped[str] = mapped_column(String(40), nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now, nullable=False)

    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    direction: Mapped[Direction] = mapped_column(Enum(Direction, name="message_direction"), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Última línea de defensa contra reservas duplicadas
        UniqueConstraint(
            "conversation_id", "appointment_date", "start_time",
            name="uq_appointments_conversation_date_time",
        ),
        Index("ix_appointments_provider_date", "provider_id", "appointment_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, default=None)
    contact_phone: Mapped[str] = mapped_column(String(40), nullable=False)

    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM local
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)    # HH:MM local, puede ser < start
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    service: Mapped[str] = mapped_column(String(20), nullable=False)    # etiqueta de duración
    extras: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    base_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    extras_total: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    total_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)

    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.pending,
        nullable=False,
    )
    client_arrived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider_ready: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now, nullable=False)


class RateLimitEvent(Base):
    __tablename__ = "rate_limit_events"
    __table_args__ = (
        Index("ix_rate_limit_events_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now, nullable=False)


class AgentEvent(Base):
    __tablename__ = "agent_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    conversation_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(60), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_naive_now, nullable=False)
