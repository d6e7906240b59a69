# booking_agent/errors.py
from __future__ import annotations
import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    client_input = "client_input"
    conflict = "conflict"
    configuration = "configuration"
    dependency = "dependency"
    rate_limited = "rate_limited"


class AgentError(Exception):
    kind: ErrorKind = ErrorKind.dependency

    def __init__(self, reason: str, detail: str = "", suggestion: Optional[str] = None):
        super().__init__(detail or reason)
        self.reason = reason
        self.detail = detail
        self.suggestion = suggestion

    def to_dict(self) -> dict:
        return {
            "ok": False,
            "kind": self.kind.value,
            "reason": self.reason,
            "detail": self.detail,
            "suggestion": self.suggestion,
        }


class ClientInputError(AgentError):
    """Formato, enum o fecha inválidos. Se responde con sugerencia, nunca se reintenta."""
    kind = ErrorKind.client_input


class ConflictError(AgentError):
    """Duplicado o slot tomado. Estado benigno: la reserva ya existe."""
    kind = ErrorKind.conflict

    def __init__(self, reason: str, detail: str = "", suggestion: Optional[str] = None,
                 appointment_id: Optional[int] = None):
        super().__init__(reason, detail, suggestion)
        self.appointment_id = appointment_id

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["appointment_id"] = self.appointment_id
        return out


class ConfigurationError(AgentError):
    """Catálogo mal configurado (precio faltante, enum vacío)."""
    kind = ErrorKind.configuration

    def __init__(self, detail: str):
        super().__init__("configuration_error", detail)


class DependencyError(AgentError):
    """Falla o timeout de BD, OpenAI o Twilio."""
    kind = ErrorKind.dependency

    def __init__(self, reason: str, detail: str = "", retryable: bool = True):
        super().__init__(reason, detail)
        self.retryable = retryable


class DeliveryError(DependencyError):
    def __init__(self, detail: str):
        super().__init__("delivery_failed", detail, retryable=True)


class RateLimitExceeded(AgentError):
    kind = ErrorKind.rate_limited

    def __init__(self, retry_after_seconds: int):
        super().__init__("rate_limited", f"retry after {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds
