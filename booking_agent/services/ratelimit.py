# booking_agent/services/ratelimit.py
"""
Rate limit por ventana deslizante (no por buckets de reloj), respaldado por
la tabla rate_limit_events para funcionar con varias instancias.

- admit(): cuenta eventos en [now - window, now]; permite si count < max y registra.
  Cualquier error de BD -> se permite (fail-open).
- cleanup(): borra eventos más viejos que la retención. Independiente de admit().

El conteo + insert no es transaccional: bajo concurrencia puede pasar algún
request extra. Es un guardia anti-abuso, no facturación.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import RateLimitPolicy
from ..models import RateLimitEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    request_count: Optional[int] = None
    retry_after_seconds: Optional[int] = None


def _utc_naive(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


class RateLimiter:
    def __init__(self, session_factory: Callable[[], Session], policy: RateLimitPolicy):
        self.session_factory = session_factory
        self.policy = policy

    def admit(self, user_id: str, now: Optional[datetime] = None) -> RateLimitDecision:
        ts = _utc_naive(now)
        cutoff = ts - self.policy.window
        db = self.session_factory()
        try:
            in_window = (
                RateLimitEvent.user_id == user_id,
                RateLimitEvent.created_at >= cutoff,
                RateLimitEvent.created_at <= ts,
            )
            count, oldest = db.execute(
                select(func.count(RateLimitEvent.id), func.min(RateLimitEvent.created_at)).where(*in_window)
            ).one()
            count = count or 0

            if count >= self.policy.max_requests:
                # Segundos hasta que el evento más viejo salga de la ventana
                wait_s = (oldest + self.policy.window - ts).total_seconds() if oldest else self.policy.window.total_seconds()
                retry_after = max(1, math.ceil(wait_s))
                logger.warning("Rate limit excedido: user=%s %s/%s retry_after=%ss",
                               user_id, count, self.policy.max_requests, retry_after)
                return RateLimitDecision(allowed=False, request_count=count, retry_after_seconds=retry_after)

            try:
                db.add(RateLimitEvent(user_id=user_id, created_at=ts))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("No se pudo registrar request (se permite): user=%s count=%s err=%s", user_id, count, e)
                return RateLimitDecision(allowed=True, request_count=count)

            logger.debug("Request permitido: user=%s %s/%s", user_id, count + 1, self.policy.max_requests)
            return RateLimitDecision(allowed=True, request_count=count + 1)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Error consultando rate limit (fail-open): user=%s err=%s", user_id, e)
            return RateLimitDecision(allowed=True)
        finally:
            db.close()

    def cleanup(self, now: Optional[datetime] = None) -> int:
        cutoff = _utc_naive(now) - self.policy.retention
        db = self.session_factory()
        try:
            result = db.execute(delete(RateLimitEvent).where(RateLimitEvent.created_at < cutoff))
            db.commit()
            deleted = result.rowcount or 0
            if deleted:
                logger.info("Limpieza rate limit: %s registros borrados (antes de %s)", deleted, cutoff.isoformat())
            return deleted
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Limpieza de rate limit falló: %s", e)
            return 0
        finally:
            db.close()
