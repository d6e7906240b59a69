# booking_agent/agent/agent_controller.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from openai import OpenAI
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..config import BookingRules, settings
from ..database import SessionLocal
from ..domain import BookingRequest
from ..errors import (
    ClientInputError, ConfigurationError, ConflictError, DeliveryError, DependencyError, RateLimitExceeded,
)
from ..schemas import AgentReply, BookingToolArgs
from ..services import store
from ..services.booking import (
    build_confirmation_message, create_appointment, duplicate_lookup, validate_booking,
)
from ..services.events import log_event
from ..services.notifications import send_text
from ..services.pricing import price
from ..services.ratelimit import RateLimiter
from ..services.timeutils import to_local
from ..services.twilio_client import strip_wa
from .llm import InferenceResult, LLMOptions, ToolCall, call_model, get_openai_client
from .modes import WaitingRequest, WorkflowRequest, build_request
from .tools import BOOKING_TOOL_NAME

logger = logging.getLogger(__name__)

FALLBACK_TEXT = "Je n'ai pas pu traiter votre message. Pouvez-vous reformuler ?"
BOOKING_UNAVAILABLE_TEXT = "Je ne peux pas finaliser la réservation pour le moment. Réessayez un peu plus tard."

# Confianza mínima para marcar la llegada del cliente
ARRIVAL_CONFIDENCE = ("high", "medium")

Sender = Callable[..., dict]


@dataclass
class EventContext:
    """Identificadores del evento en curso, para la bitácora."""
    db: Session
    provider_id: int
    conversation_id: int

    def log(self, event_type: str, description: str = "", **payload) -> None:
        log_event(self.db, event_type, description, provider_id=self.provider_id,
                  conversation_id=self.conversation_id, payload=payload)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------
# Reserva (solo WORKFLOW)
# -----------------------
def _handle_booking(ctx: EventContext, call: ToolCall, request: WorkflowRequest,
                    provider: store.ProviderData, conversation: store.ConversationData,
                    now: datetime, rules: BookingRules) -> AgentReply:
    ctx.log("tool_call_detected", call.name, arguments=call.arguments)
    try:
        args = BookingToolArgs.model_validate(call.arguments)
    except ValidationError as e:
        logger.warning("Argumentos de reserva inválidos: %s", e)
        ctx.log("appointment_validation_failed", "argumentos inválidos", errors=str(e))
        return AgentReply(status="rejected", mode=request.mode.value, reason="invalid_format",
                          kind="client_input", message=FALLBACK_TEXT)

    booking = BookingRequest(
        duration=args.duration,
        extras=tuple(args.selected_extras),
        appointment_date=args.appointment_date,
        appointment_time=args.appointment_time,
    )
    try:
        check = validate_booking(
            booking,
            provider.catalog.enums(),
            conversation.conversation_id,
            windows=provider.windows,
            appointments=provider.appointments,
            now=now,
            rules=rules,
            find_duplicate=duplicate_lookup(ctx.db),
        )
        quote = price(check.request.duration, check.request.extras, provider.catalog)
        ctx.log("price_calculated", f"CHF {quote.total}", base=quote.base, extras_total=quote.extras_total)
        appt = create_appointment(
            ctx.db, check, quote,
            provider_id=provider.provider_id,
            conversation_id=conversation.conversation_id,
            contact_phone=conversation.contact_phone,
            contact_name=conversation.contact_name,
        )
    except ConflictError as e:
        if e.reason == "duplicate":
            ctx.log("duplicate_prevented", e.detail, appointment_id=e.appointment_id)
            return AgentReply(status="duplicate", mode=request.mode.value, reason=e.reason, kind=e.kind.value,
                              appointment_id=e.appointment_id, message=e.suggestion or "")
        ctx.log("appointment_validation_failed", e.detail, reason=e.reason)
        return AgentReply(status="rejected", mode=request.mode.value, reason=e.reason, kind=e.kind.value,
                          message=e.suggestion or FALLBACK_TEXT)
    except ClientInputError as e:
        event = "enum_validation_failed" if e.reason == "invalid_enum" else "appointment_validation_failed"
        ctx.log(event, e.detail, reason=e.reason, arguments=call.arguments)
        return AgentReply(status="rejected", mode=request.mode.value, reason=e.reason, kind=e.kind.value,
                          message=e.suggestion or FALLBACK_TEXT)
    except ConfigurationError as e:
        logger.error("Configuración inválida al reservar (provider=%s): %s", provider.provider_id, e.detail)
        ctx.log("configuration_error", e.detail)
        return AgentReply(status="rejected", mode=request.mode.value, reason=e.reason, kind=e.kind.value,
                          message=BOOKING_UNAVAILABLE_TEXT)

    ctx.log("appointment_created", f"{appt.start_time}-{appt.end_time}", appointment_id=appt.id,
            total_price=float(appt.total_price))
    return AgentReply(
        status="booked",
        mode=request.mode.value,
        appointment_id=appt.id,
        message=build_confirmation_message(appt.start_time, appt.service, quote, provider.address),
    )


# -----------------------
# Espera (solo WAITING)
# -----------------------
def _handle_waiting(ctx: EventContext, request: WaitingRequest, result: InferenceResult) -> AgentReply:
    reply = result.waiting_reply
    if reply.client_has_arrived and reply.confidence in ARRIVAL_CONFIDENCE:
        if not request.appointment.client_arrived:
            store.mark_client_arrived(ctx.db, request.appointment.id)
            ctx.log("client_arrival_detected", reply.confidence, appointment_id=request.appointment.id)
            logger.info("Cliente llegó: appt_id=%s confidence=%s", request.appointment.id, reply.confidence)
    return AgentReply(status="replied", mode=request.mode.value, appointment_id=request.appointment.id,
                      message=reply.message)


def _dispatch(ctx: EventContext, request, result: InferenceResult,
              provider: store.ProviderData, conversation: store.ConversationData,
              now: datetime, rules: BookingRules) -> AgentReply:
    if isinstance(request, WaitingRequest):
        # Nunca se reserva en WAITING, aunque el modelo devuelva una tool-call
        return _handle_waiting(ctx, request, result)

    calls = [c for c in result.tool_calls if c.name == BOOKING_TOOL_NAME]
    if calls and request.booking_enabled:
        return _handle_booking(ctx, calls[0], request, provider, conversation, now, rules)
    if calls:
        logger.warning("Tool-call ignorada: reserva desactivada para provider=%s", provider.provider_id)
    return AgentReply(status="replied", mode=request.mode.value, message=result.text or FALLBACK_TEXT)


# -----------------------
# Entrada principal
# -----------------------
def run_agent(
    provider_number: str,
    contact: str,
    user_text: str,
    *,
    contact_name: Optional[str] = None,
    session_factory=SessionLocal,
    limiter: Optional[RateLimiter] = None,
    llm_client: Optional[OpenAI] = None,
    sender: Sender = send_text,
    now: Optional[datetime] = None,
    rules: Optional[BookingRules] = None,
    options: Optional[LLMOptions] = None,
) -> AgentReply:
    """
    Procesa un mensaje entrante de punta a punta y devuelve el resultado.
    Lanza RateLimitExceeded, DependencyError o DeliveryError para que el router
    los traduzca a 429/503/502.
    """
    now = now or _utcnow()
    rules = rules or settings.booking_rules()
    options = options or LLMOptions.from_settings(settings)
    limiter = limiter or RateLimiter(session_factory, settings.rate_limit_policy())

    db = session_factory()
    try:
        provider_row = store.get_provider_by_number(db, strip_wa(provider_number))
        if provider_row is None:
            logger.warning("Mensaje para número desconocido: %s", provider_number)
            return AgentReply(status="ignored", reason="unknown_provider")

        contact_key = strip_wa(contact)
        conv_row = store.get_or_create_conversation(db, provider_row.id, contact_key, contact_name)
        ctx = EventContext(db=db, provider_id=provider_row.id, conversation_id=conv_row.id)
        store.save_message(db, conv_row.id, models.Direction.incoming, user_text)
        ctx.log("webhook_received", user_text[:200])

        decision = limiter.admit(str(provider_row.id), now=now)
        if not decision.allowed:
            ctx.log("rate_limited", "", retry_after_seconds=decision.retry_after_seconds,
                    request_count=decision.request_count)
            raise RateLimitExceeded(decision.retry_after_seconds or 1)

        today = to_local(now, rules.timezone).date
        provider, conversation = store.load_event_context(
            session_factory, provider_row.id, conv_row.id, today,
            history_limit=settings.MAX_HISTORY_MESSAGES,
            timeout=settings.DATA_FETCH_TIMEOUT_SECONDS,
        )

        request = build_request(provider, conversation, user_text, now, rules)
        ctx.log("mode_selected", request.mode.value)
        if isinstance(request, WorkflowRequest):
            ctx.log("availabilities_computed", request.available_ranges)
            if request.configuration_error:
                ctx.log("configuration_error", request.configuration_error)

        result = call_model(llm_client or get_openai_client(), request, options)
        reply = _dispatch(ctx, request, result, provider, conversation, now, rules)

        try:
            sender(contact, reply.message, from_=provider_number)
        except DeliveryError as e:
            ctx.log("message_send_failed", e.detail)
            raise
        store.save_message(db, conv_row.id, models.Direction.outgoing, reply.message)
        ctx.log("message_sent", reply.status, usage=result.usage)
        logger.info("Respuesta enviada: provider=%s conversation=%s mode=%s status=%s",
                    provider_row.id, conv_row.id, reply.mode, reply.status)
        return reply
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Error de BD procesando mensaje: provider_number=%s err=%s", provider_number, e)
        raise DependencyError("store_failed", str(e)) from e
    finally:
        db.close()
