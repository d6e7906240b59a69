# booking_agent/schemas.py
from __future__ import annotations
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# -----------------------
# Salidas del modelo (input no confiable)
# -----------------------
class BookingToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    duration: str
    selected_extras: list[str] = Field(default_factory=list)
    appointment_date: str
    appointment_time: str


class WaitingReply(BaseModel):
    message: str
    client_has_arrived: bool = False
    confidence: Literal["high", "medium", "low"] = "low"


# -----------------------
# Respuestas HTTP
# -----------------------
class AgentReply(BaseModel):
    status: Literal["replied", "booked", "rejected", "duplicate", "ignored"]
    mode: Optional[str] = None
    message: str = ""
    appointment_id: Optional[int] = None
    reason: Optional[str] = None
    kind: Optional[str] = None


class RateLimitedResponse(BaseModel):
    error: str = "rate_limited"
    retry_after_seconds: int


class AvailabilityOut(BaseModel):
    provider_id: int
    date: date
    ranges: str
    bookable: bool
    runs: list[tuple[str, str]]
    next_slot: Optional[str] = None


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    contact_phone: str
    appointment_date: date
    start_time: str
    end_time: str
    duration_minutes: int
    service: str
    extras: list
    total_price: float
    status: str
    client_arrived: bool


class ModeOut(BaseModel):
    conversation_id: int
    mode: str
    appointment_id: Optional[int] = None
