# booking_agent/routers/admin.py
from __future__ import annotations
import logging
from datetime import date, datetime, timezone
from typing import Optional

from dateutil import parser as dtparser
from fastapi import APIRouter, Depends, Header, HTTPException, Query

from ..agent.modes import select_mode
from ..config import settings
from ..database import get_session_factory
from ..errors import DependencyError
from ..schemas import AppointmentOut, AvailabilityOut, ModeOut
from ..services import store
from ..services.availability import compute_available_ranges, compute_free_runs, is_bookable, next_available_slot
from ..services.ratelimit import RateLimiter
from ..services.timeutils import format_hhmm, to_local

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def _require_admin(x_admin_token: str | None) -> None:
    expected = (settings.ADMIN_TOKEN or "").strip()
    provided = (x_admin_token or "").strip()
    if not expected:
        raise HTTPException(status_code=403, detail="ADMIN_TOKEN no configurado")
    if provided != expected:
        raise HTTPException(status_code=401, detail="Token inválido")


def _parse_date(s: str) -> date:
    try:
        return dtparser.isoparse(s).date()
    except (ValueError, OverflowError):
        raise HTTPException(status_code=400, detail="Formato de fecha inválido. Use YYYY-MM-DD.")


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────────────────────
# Básicos (main.py monta este router con prefix="/admin")
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/ping")
def admin_ping():
    return {"ok": True, "ts": _now().isoformat(), "tz": settings.TIMEZONE}


@router.get("/providers/{provider_id}/availability", response_model=AvailabilityOut)
def admin_availability(
    provider_id: int,
    x_admin_token: str | None = Header(default=None),
    session_factory=Depends(get_session_factory),
):
    """Rangos reservables de hoy tal como los ve el agente."""
    _require_admin(x_admin_token)
    now = _now()
    rules = settings.booking_rules()
    today = to_local(now, rules.timezone).date
    try:
        data = store.fetch_provider_data(session_factory, provider_id, today)
    except DependencyError as e:
        raise HTTPException(status_code=404, detail=e.detail)

    ranges = compute_available_ranges(data.windows, data.appointments, now, rules)
    runs = compute_free_runs(data.windows, data.appointments, now, rules)
    return AvailabilityOut(
        provider_id=provider_id,
        date=today,
        ranges=ranges,
        bookable=is_bookable(ranges),
        runs=[(format_hhmm(a), format_hhmm(b)) for a, b in runs],
        next_slot=next_available_slot(data.windows, data.appointments, now, rules),
    )


@router.get("/providers/{provider_id}/appointments", response_model=list[AppointmentOut])
def admin_appointments(
    provider_id: int,
    x_admin_token: str | None = Header(default=None),
    date_str: Optional[str] = Query(None, alias="date", description="YYYY-MM-DD (por defecto: hoy)"),
    session_factory=Depends(get_session_factory),
):
    _require_admin(x_admin_token)
    day = _parse_date(date_str) if date_str else to_local(_now(), settings.TIMEZONE).date
    db = session_factory()
    try:
        return [
            AppointmentOut(
                id=a.id,
                conversation_id=a.conversation_id,
                contact_phone=a.contact_phone,
                appointment_date=a.appointment_date,
                start_time=a.start_time,
                end_time=a.end_time,
                duration_minutes=a.duration_minutes,
                service=a.service,
                extras=a.extras or [],
                total_price=float(a.total_price),
                status=a.status.value,
                client_arrived=a.client_arrived,
            )
            for a in store.appointments_on(db, provider_id, day)
        ]
    finally:
        db.close()


@router.get("/conversations/{conversation_id}/mode", response_model=ModeOut)
def admin_conversation_mode(
    conversation_id: int,
    x_admin_token: str | None = Header(default=None),
    session_factory=Depends(get_session_factory),
):
    """Modo (WORKFLOW/WAITING) que recibiría el próximo mensaje."""
    _require_admin(x_admin_token)
    today = to_local(_now(), settings.TIMEZONE).date
    db = session_factory()
    try:
        appt = store.confirmed_appointment_today(db, conversation_id, today)
        snap = store.snapshot(appt) if appt else None
    finally:
        db.close()
    return ModeOut(conversation_id=conversation_id, mode=select_mode(snap).value,
                   appointment_id=snap.id if snap else None)


@router.post("/ratelimit/cleanup")
def admin_ratelimit_cleanup(
    x_admin_token: str | None = Header(default=None),
    session_factory=Depends(get_session_factory),
):
    _require_admin(x_admin_token)
    deleted = RateLimiter(session_factory, settings.rate_limit_policy()).cleanup()
    return {"ok": True, "deleted": deleted}
