# booking_agent/agent/modes.py
"""
Selector de modo de conversación.

WORKFLOW: sin cita confirmada hoy -> se ofrece la tool de reserva.
WAITING:  con cita confirmada hoy -> salida JSON fija (mensaje + llegada), sin tool.

El modo se recalcula en cada mensaje a partir de la BD; la petición resultante
es una unión etiquetada (WorkflowRequest | WaitingRequest) que el controlador
despacha una sola vez.
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from ..config import BookingRules
from ..errors import ConfigurationError
from ..services.availability import compute_available_ranges
from ..services.store import AppointmentSnapshot, ConversationData, ProviderData
from ..services.timeutils import to_local
from .prompts import build_waiting_prompt, build_workflow_prompt
from .tools import WAITING_RESPONSE_FORMAT, build_booking_tool

logger = logging.getLogger(__name__)


class AgentMode(str, enum.Enum):
    WORKFLOW = "WORKFLOW"
    WAITING = "WAITING"


@dataclass(frozen=True)
class WorkflowRequest:
    system_prompt: str
    messages: tuple[dict, ...]
    available_ranges: str
    tool: Optional[dict] = None
    configuration_error: Optional[str] = None
    mode: AgentMode = AgentMode.WORKFLOW

    @property
    def booking_enabled(self) -> bool:
        return self.tool is not None


@dataclass(frozen=True)
class WaitingRequest:
    system_prompt: str
    messages: tuple[dict, ...]
    appointment: AppointmentSnapshot
    response_format: dict
    mode: AgentMode = AgentMode.WAITING


AgentRequest = Union[WorkflowRequest, WaitingRequest]


def select_mode(today_appointment: Optional[AppointmentSnapshot]) -> AgentMode:
    return AgentMode.WAITING if today_appointment else AgentMode.WORKFLOW


def _chat_messages(history: tuple[dict, ...], user_text: str) -> tuple[dict, ...]:
    msgs = list(history)
    current = {"role": "user", "content": user_text}
    if not msgs or msgs[-1] != current:
        msgs.append(current)
    return tuple(msgs)


def build_request(
    provider: ProviderData,
    conversation: ConversationData,
    user_text: str,
    now: datetime,
    rules: BookingRules,
) -> AgentRequest:
    moment = to_local(now, rules.timezone)
    messages = _chat_messages(conversation.history, user_text)

    if select_mode(conversation.today_appointment) is AgentMode.WAITING:
        return WaitingRequest(
            system_prompt=build_waiting_prompt(provider.name, conversation.today_appointment, moment),
            messages=messages,
            appointment=conversation.today_appointment,
            response_format=WAITING_RESPONSE_FORMAT,
        )

    ranges = compute_available_ranges(provider.windows, provider.appointments, now, rules)
    tool: Optional[dict] = None
    config_error: Optional[str] = None
    try:
        tool = build_booking_tool(provider.catalog.enums())
    except ConfigurationError as e:
        # Se desactiva la reserva solo para esta petición
        logger.error("Tool de reserva desactivada (provider=%s): %s", provider.provider_id, e.detail)
        config_error = e.detail

    return WorkflowRequest(
        system_prompt=build_workflow_prompt(
            provider.name, provider.address, moment, ranges, provider.catalog,
            rules.lead_time_minutes, booking_enabled=tool is not None,
        ),
        messages=messages,
        available_ranges=ranges,
        tool=tool,
        configuration_error=config_error,
    )
