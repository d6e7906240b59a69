# booking_agent/agent/llm.py
# Llamada al modelo. Devuelve texto, tool-calls o la respuesta JSON de espera.
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

import openai
from openai import OpenAI
from pydantic import ValidationError

from ..config import Settings, settings
from ..errors import DependencyError
from ..schemas import WaitingReply
from .modes import AgentRequest, WaitingRequest, WorkflowRequest

logger = logging.getLogger(__name__)

WAITING_FALLBACK = "Je reviens vers vous dans un instant."


@dataclass(frozen=True)
class LLMOptions:
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 500
    timeout: float = 30

    @classmethod
    def from_settings(cls, s: Settings) -> "LLMOptions":
        return cls(
            model=s.OPENAI_AGENT_MODEL,
            temperature=s.OPENAI_TEMPERATURE,
            max_tokens=s.OPENAI_MAX_TOKENS,
            timeout=s.OPENAI_TIMEOUT_SECONDS,
        )


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict


@dataclass(frozen=True)
class InferenceResult:
    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    waiting_reply: Optional[WaitingReply] = None
    usage: dict = field(default_factory=dict)


def get_openai_client() -> OpenAI:
    if not settings.OPENAI_API_KEY:
        raise DependencyError("inference_not_configured", "OPENAI_API_KEY no configurada", retryable=False)
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def _coerce_json(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Argumentos de tool no son JSON: %r", raw[:200])
            return {}
        return data if isinstance(data, dict) else {}
    return {}


def _parse_waiting(content: str) -> WaitingReply:
    try:
        return WaitingReply.model_validate(_coerce_json(content))
    except ValidationError as e:
        logger.warning("Respuesta WAITING inválida, se usa fallback: %s", e)
        return WaitingReply(message=(content or "").strip() or WAITING_FALLBACK)


def call_model(client: OpenAI, request: AgentRequest, options: LLMOptions) -> InferenceResult:
    kwargs = dict(
        model=options.model,
        messages=[{"role": "system", "content": request.system_prompt}, *request.messages],
        temperature=options.temperature,
        max_tokens=options.max_tokens,
        timeout=options.timeout,
    )
    if isinstance(request, WorkflowRequest) and request.tool is not None:
        kwargs["tools"] = [request.tool]
        kwargs["tool_choice"] = "auto"
    elif isinstance(request, WaitingRequest):
        kwargs["response_format"] = request.response_format

    try:
        resp = client.chat.completions.create(**kwargs)
    except openai.APITimeoutError as e:
        logger.error("OpenAI timeout (%ss): %s", options.timeout, e)
        raise DependencyError("inference_timeout", str(e)) from e
    except openai.OpenAIError as e:
        logger.exception("OpenAI falló: %s", e)
        raise DependencyError("inference_failed", str(e)) from e

    msg = resp.choices[0].message
    usage = {}
    if getattr(resp, "usage", None) is not None:
        usage = {"prompt_tokens": resp.usage.prompt_tokens, "completion_tokens": resp.usage.completion_tokens}

    if isinstance(request, WaitingRequest):
        return InferenceResult(waiting_reply=_parse_waiting(msg.content or ""), usage=usage)

    calls = tuple(
        ToolCall(id=c.id, name=c.function.name, arguments=_coerce_json(c.function.arguments))
        for c in (getattr(msg, "tool_calls", None) or [])
    )
    return InferenceResult(text=(msg.content or "").strip(), tool_calls=calls, usage=usage)
