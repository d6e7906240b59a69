# booking_agent/services/events.py
# Bitácora del agente en BD (agent_events). Un fallo aquí nunca rompe el flujo.
from __future__ import annotations
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import AgentEvent

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    event_type: str,
    description: str = "",
    *,
    provider_id: Optional[int] = None,
    conversation_id: Optional[int] = None,
    payload: Optional[dict[str, Any]] = None,
) -> Optional[AgentEvent]:
    ev = AgentEvent(
        provider_id=provider_id,
        conversation_id=conversation_id,
        event_type=event_type,
        description=description,
        payload=payload or {},
    )
    try:
        db.add(ev)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("No se pudo registrar evento %s: %s", event_type, e)
        return None
    logger.debug("Evento %s: %s", event_type, description)
    return ev
