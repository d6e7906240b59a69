# booking_agent/services/twilio_client.py
from __future__ import annotations
import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from ..config import settings
from ..errors import DeliveryError

logger = logging.getLogger(__name__)


def normalize_wa(number: str) -> str:
    """'+41 79 000' / 'whatsapp: 41790' -> 'whatsapp:+41790...'."""
    if not number:
        return number
    number = number.strip()
    if not number.startswith("whatsapp:"):
        number = f"whatsapp:{number}"
    prefix, rest = number.split(":", 1)
    rest = rest.strip().replace(" ", "")
    if not rest.startswith("+"):
        rest = "+" + rest
    return f"{prefix}:{rest}"


def strip_wa(number: str) -> str:
    """'whatsapp:+41790000000' -> '+41790000000' (clave usada en BD)."""
    return normalize_wa(number).split(":", 1)[1] if number else number


def get_twilio_client() -> Optional[Client]:
    if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
        return None
    http_client = TwilioHttpClient(timeout=settings.TWILIO_TIMEOUT_SECONDS)
    return Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, http_client=http_client)


def send_whatsapp(to: str, body: str, from_: Optional[str] = None) -> dict:
    """
    Envía un WhatsApp usando Twilio.
    - DRY_RUN=true: no envía; registra en logs y regresa {"dry_run": True, ...}
    - Sin credenciales: modo MOCK, regresa {"mock": True, ...}
    - Error de Twilio: lanza DeliveryError
    """
    to_norm = normalize_wa(to)
    from_norm = normalize_wa(from_ or settings.TWILIO_WHATSAPP_FROM or "")

    if settings.DRY_RUN:
        logger.info("[DRY_RUN WHATSAPP] to=%s body=%s", to_norm, body.replace("\n", " | "))
        return {"dry_run": True, "to": to_norm, "body": body}

    client = get_twilio_client()
    if client is None or not from_norm:
        logger.warning("[WA MOCK] sin credenciales Twilio; to=%s body=%s", to_norm, body.replace("\n", " | "))
        return {"mock": True, "to": to_norm, "body": body}

    try:
        msg = client.messages.create(from_=from_norm, to=to_norm, body=body)
    except (TwilioException, OSError) as e:  # OSError cubre timeouts de red
        logger.error("[WA ERROR] to=%s err=%s", to_norm, e)
        raise DeliveryError(str(e)) from e
    return {"sid": msg.sid, "to": to_norm}
