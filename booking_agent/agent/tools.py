# booking_agent/agent/tools.py
# Esquemas expuestos al modelo: tool de reserva (WORKFLOW) y JSON de espera (WAITING).
from __future__ import annotations

from ..domain import CatalogEnums
from ..errors import ConfigurationError

BOOKING_TOOL_NAME = "create_appointment_summary"

CONFIDENCE_LEVELS = ("high", "medium", "low")


def build_booking_tool(enums: CatalogEnums) -> dict:
    """
    Tool con enums cerrados al catálogo real del proveedor. Sin valores por
    defecto: un catálogo vacío lanza ConfigurationError y la tool no se expone.
    """
    if not enums.durations:
        raise ConfigurationError("Catálogo sin duraciones: no se puede exponer la tool de reserva")
    if not enums.extras:
        raise ConfigurationError("Catálogo sin extras: no se puede exponer la tool de reserva")

    return {
        "type": "function",
        "function": {
            "name": BOOKING_TOOL_NAME,
            "description": (
                "Crée le rendez-vous. À utiliser UNIQUEMENT quand la durée, les extras, "
                "l'heure sont connus ET que le client a confirmé le récapitulatif."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "duration": {
                        "type": "string",
                        "enum": list(enums.durations),
                        "description": "Durée du rendez-vous (ex: '30min', '1h').",
                    },
                    "selected_extras": {
                        "type": "array",
                        "items": {"type": "string", "enum": list(enums.extras)},
                        "description": "Extras choisis (peut être vide []).",
                    },
                    "appointment_date": {
                        "type": "string",
                        "description": "Date du rendez-vous (YYYY-MM-DD).",
                        "pattern": r"^\d{4}-\d{2}-\d{2}$",
                    },
                    "appointment_time": {
                        "type": "string",
                        "description": "Heure du rendez-vous, 24h (HH:MM, ex: 14:30).",
                        "pattern": r"^([01]\d|2[0-3]):[0-5]\d$",
                    },
                },
                "required": ["duration", "selected_extras", "appointment_date", "appointment_time"],
                "additionalProperties": False,
            },
        },
    }


WAITING_RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "ai_waiting_response",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "message": {"type": "string"},
                "client_has_arrived": {"type": "boolean"},
                "confidence": {"type": "string", "enum": list(CONFIDENCE_LEVELS)},
            },
            "required": ["message", "client_has_arrived", "confidence"],
            "additionalProperties": False,
        },
    },
}
