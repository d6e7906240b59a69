"""
Fixtures compartidas: BD SQLite temporal, proveedor sembrado con catálogo y
ventanas, y dobles del cliente OpenAI y del relay de mensajes.
"""
import json
from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from booking_agent import models
from booking_agent.config import BookingRules, RateLimitPolicy
from booking_agent.database import init_db
from booking_agent.domain import BookedSlot, Window

PARIS = ZoneInfo("Europe/Paris")

# Miércoles -> day_of_week 3 (0 = domingo)
TODAY = date(2025, 1, 15)
WEDNESDAY = 3

PROVIDER_NUMBER = "+41790000000"
CLIENT_NUMBER = "+41791111111"


def paris(hour: int, minute: int = 0, day: date = TODAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=PARIS)


def window(start: str, end: str, dow: int = WEDNESDAY) -> Window:
    sh, sm = map(int, start.split(":"))
    eh, em = map(int, end.split(":"))
    return Window(day_of_week=dow, start_minute=sh * 60 + sm, end_minute=eh * 60 + em)


def booked(start: str, end: str, day: date = TODAY, status: str = "confirmed") -> BookedSlot:
    sh, sm = map(int, start.split(":"))
    eh, em = map(int, end.split(":"))
    return BookedSlot(appointment_date=day, start_minute=sh * 60 + sm, end_minute=eh * 60 + em, status=status)


def completion(content=None, tool_args=None):
    """Respuesta mínima con la forma de openai ChatCompletion."""
    tool_calls = None
    if tool_args is not None:
        tool_calls = [SimpleNamespace(
            id="call_1",
            function=SimpleNamespace(name="create_appointment_summary", arguments=json.dumps(tool_args)),
        )]
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=None)


def fake_llm(content=None, tool_args=None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create.return_value = completion(content, tool_args)
    return client


@pytest.fixture
def rules():
    return BookingRules(timezone="Europe/Paris", lead_time_minutes=30)


@pytest.fixture
def policy():
    return RateLimitPolicy()


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def provider(db):
    p = models.Provider(name="Studio Léa", whatsapp_number=PROVIDER_NUMBER, address="Rue du Lac 12, Lausanne")
    p.rates = [
        models.RateOption(duration="30min", price=100),
        models.RateOption(duration="1h", price=150),
        models.RateOption(duration="2h", price=280),
    ]
    p.extras = [models.ExtraOption(name="Massage", price=50)]
    p.windows = [
        models.AvailabilityWindow(day_of_week=WEDNESDAY, start_time="14:00", end_time="16:00"),
        models.AvailabilityWindow(day_of_week=WEDNESDAY, start_time="18:30", end_time="02:00"),
    ]
    db.add(p); db.commit(); db.refresh(p)
    return p


@pytest.fixture
def conversation(db, provider):
    c = models.Conversation(provider_id=provider.id, contact_phone=CLIENT_NUMBER, contact_name="Marc")
    db.add(c); db.commit(); db.refresh(c)
    return c


@pytest.fixture
def sender():
    return MagicMock(return_value={"mock": True})
