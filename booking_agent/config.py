# booking_agent/config.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class BookingRules:
    """Reglas de reserva que se pasan explícitamente al motor y al pipeline."""
    timezone: str = "Europe/Paris"
    lead_time_minutes: int = 30


@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int = 10
    window: timedelta = timedelta(minutes=1)
    retention: timedelta = timedelta(hours=24)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ===== App =====
    APP_NAME: str = "booking_agent"
    ENV: str = "dev"
    # Zona única de operación (no configurable por proveedor)
    TIMEZONE: str = "Europe/Paris"

    # ===== DB =====
    # En producción define DATABASE_URL con tu Postgres. Local cae a SQLite.
    DATABASE_URL: str = "sqlite:///./booking_agent.db"

    DB_POOL_SIZE: int = 2
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 min
    # Solo Postgres: corta consultas colgadas
    DB_STATEMENT_TIMEOUT_MS: int = 5000

    # ===== Twilio =====
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_WHATSAPP_FROM: Optional[str] = None
    TWILIO_TIMEOUT_SECONDS: int = 10

    # Simulación (True = no envía mensajes reales)
    DRY_RUN: bool = False

    # ===== OpenAI =====
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_AGENT_MODEL: str = "gpt-4o-mini"
    OPENAI_TEMPERATURE: float = 0.7
    OPENAI_MAX_TOKENS: int = 500
    OPENAI_TIMEOUT_SECONDS: int = 30

    # ===== Reservas =====
    MIN_BOOKING_LEAD_TIME_MINUTES: int = 30
    MAX_HISTORY_MESSAGES: int = 20
    DATA_FETCH_TIMEOUT_SECONDS: float = 10.0

    # ===== Rate limit =====
    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_RETENTION_HOURS: int = 24
    RATE_LIMIT_CLEANUP_INTERVAL_MINUTES: int = 60

    # ===== Jobs =====
    ENABLE_SCHEDULER: bool = True

    # ===== Admin =====
    ADMIN_TOKEN: Optional[str] = None

    def booking_rules(self) -> BookingRules:
        return BookingRules(
            timezone=self.TIMEZONE,
            lead_time_minutes=self.MIN_BOOKING_LEAD_TIME_MINUTES,
        )

    def rate_limit_policy(self) -> RateLimitPolicy:
        return RateLimitPolicy(
            max_requests=self.RATE_LIMIT_MAX_REQUESTS,
            window=timedelta(seconds=self.RATE_LIMIT_WINDOW_SECONDS),
            retention=timedelta(hours=self.RATE_LIMIT_RETENTION_HOURS),
        )


settings = Settings()
