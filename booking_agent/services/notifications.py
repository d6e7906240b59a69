# booking_agent/services/notifications.py
from __future__ import annotations
import logging
from typing import Optional

from ..errors import DeliveryError
from .twilio_client import send_whatsapp

logger = logging.getLogger(__name__)

# Un reintento: el envío es idempotente desde el punto de vista del core
SEND_ATTEMPTS = 2


def send_text(contact: str, body: str, from_: Optional[str] = None) -> dict:
    """Mensaje libre usado por el agente. Falla final -> DeliveryError."""
    last_error: Optional[DeliveryError] = None
    for attempt in range(1, SEND_ATTEMPTS + 1):
        try:
            return send_whatsapp(contact, body, from_=from_)
        except DeliveryError as e:
            last_error = e
            logger.warning("Envío a %s falló (intento %s/%s): %s", contact, attempt, SEND_ATTEMPTS, e.detail)
    raise last_error
