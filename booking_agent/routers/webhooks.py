# booking_agent/routers/webhooks.py
from __future__ import annotations
import logging

from fastapi import APIRouter, Depends, Form
from fastapi.responses import JSONResponse

from ..agent.agent_controller import run_agent
from ..database import get_session_factory
from ..errors import DeliveryError, DependencyError, RateLimitExceeded
from ..schemas import AgentReply, RateLimitedResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["webhooks"])


def get_agent_overrides() -> dict:
    """Punto de inyección (cliente OpenAI, sender, limiter) para tests."""
    return {}


@router.post("/webhooks/whatsapp", response_model=AgentReply)
def whatsapp_webhook(
    From: str = Form(None),
    To: str = Form(None),
    Body: str = Form(None),
    ProfileName: str = Form(None),
    session_factory=Depends(get_session_factory),
    overrides: dict = Depends(get_agent_overrides),
):
    if not From or not To:
        return AgentReply(status="ignored", reason="missing_sender")
    raw_text = Body or ""
    logger.info("[WHATSAPP IN] from=%s to=%s body=%s", From, To, raw_text[:200])

    try:
        return run_agent(To, From, raw_text, contact_name=ProfileName,
                         session_factory=session_factory, **overrides)
    except RateLimitExceeded as e:
        return JSONResponse(
            status_code=429,
            content=RateLimitedResponse(retry_after_seconds=e.retry_after_seconds).model_dump(),
            headers={"Retry-After": str(e.retry_after_seconds)},
        )
    except DeliveryError as e:
        logger.error("[RELAY ERROR] to=%s err=%s", From, e.detail)
        return JSONResponse(status_code=502, content=e.to_dict())
    except DependencyError as e:
        logger.error("[DEPENDENCY ERROR] %s: %s", e.reason, e.detail)
        headers = {"Retry-After": "30"} if e.retryable else None
        return JSONResponse(status_code=503, content=e.to_dict(), headers=headers)
