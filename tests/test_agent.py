import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from booking_agent import models
from booking_agent.agent.agent_controller import run_agent
from booking_agent.agent.llm import LLMOptions
from booking_agent.config import RateLimitPolicy
from booking_agent.errors import DeliveryError, DependencyError, RateLimitExceeded
from booking_agent.services.ratelimit import RateLimiter

from conftest import CLIENT_NUMBER, PROVIDER_NUMBER, TODAY, fake_llm, paris

BOOK_19H = {"duration": "1h", "selected_extras": ["aucun"], "appointment_date": "2025-01-15",
            "appointment_time": "19:00"}


@pytest.fixture
def run(session_factory, policy, rules, sender, provider):
    def _run(text, llm, now=None, **kwargs):
        kwargs.setdefault("limiter", RateLimiter(session_factory, policy))
        kwargs.setdefault("sender", sender)
        return run_agent(
            f"whatsapp:{PROVIDER_NUMBER}", f"whatsapp:{CLIENT_NUMBER}", text,
            session_factory=session_factory, llm_client=llm, now=now or paris(13),
            rules=rules, options=LLMOptions(), **kwargs,
        )
    return _run


@pytest.fixture
def booked_today(db, conversation):
    appt = models.Appointment(
        provider_id=conversation.provider_id, conversation_id=conversation.id,
        contact_phone=conversation.contact_phone, appointment_date=TODAY, start_time="19:00",
        end_time="20:00", duration_minutes=60, service="1h", extras=[], base_price=150,
        extras_total=0, total_price=150, status=models.AppointmentStatus.confirmed,
    )
    db.add(appt); db.commit(); db.refresh(appt)
    return appt


def test_workflow_tool_call_books_and_confirms(run, db, conversation, sender):
    llm = fake_llm(tool_args=BOOK_19H)
    reply = run("Oui je confirme", llm)

    assert reply.status == "booked"
    assert reply.mode == "WORKFLOW"
    assert reply.message.startswith("C'est confirmé ! Aujourd'hui 19h, 1h (CHF 150) = CHF 150.")
    sender.assert_called_once_with(f"whatsapp:{CLIENT_NUMBER}", reply.message, from_=f"whatsapp:{PROVIDER_NUMBER}")

    appt = db.get(models.Appointment, reply.appointment_id)
    assert appt.conversation_id == conversation.id
    assert appt.end_time == "20:00"

    kwargs = llm.chat.completions.create.call_args.kwargs
    assert kwargs["tools"][0]["function"]["name"] == "create_appointment_summary"
    assert "response_format" not in kwargs

    outgoing = db.query(models.Message).filter_by(direction=models.Direction.outgoing).all()
    assert [m.content for m in outgoing] == [reply.message]


def test_plain_text_reply(run, sender):
    reply = run("Bonjour", fake_llm(content="Bonjour, quelle durée souhaitez-vous ?"))
    assert reply.status == "replied"
    assert reply.message == "Bonjour, quelle durée souhaitez-vous ?"
    assert sender.call_count == 1


def test_rejected_booking_replies_with_suggestion(run, db):
    reply = run("17h", fake_llm(tool_args={**BOOK_19H, "appointment_time": "17:00"}))
    assert reply.status == "rejected"
    assert reply.reason == "time_not_in_available_ranges"
    assert "18h30-2h" in reply.message
    assert db.query(models.Appointment).count() == 0


def test_hallucinated_extra_is_rejected(run, db):
    reply = run("oui", fake_llm(tool_args={**BOOK_19H, "selected_extras": ["Jacuzzi"]}))
    assert reply.status == "rejected"
    assert reply.reason == "invalid_enum"
    assert db.query(models.AgentEvent).filter_by(event_type="enum_validation_failed").count() == 1


def test_unexpected_tool_arguments_are_rejected(run, db):
    reply = run("oui", fake_llm(tool_args={**BOOK_19H, "price": 0}))
    assert reply.status == "rejected"
    assert reply.reason == "invalid_format"
    assert db.query(models.Appointment).count() == 0


def test_booking_switches_conversation_to_waiting(run, db):
    first = run("oui", fake_llm(tool_args=BOOK_19H))
    content = json.dumps({"message": "C'est noté.", "client_has_arrived": False, "confidence": "low"})
    second = run("oui", fake_llm(content=content, tool_args=BOOK_19H))

    assert first.mode == "WORKFLOW"
    assert second.mode == "WAITING"
    assert second.appointment_id == first.appointment_id
    assert db.query(models.Appointment).count() == 1


def test_waiting_mode_never_books(run, db, booked_today):
    content = json.dumps({"message": "Je vous attends.", "client_has_arrived": False, "confidence": "low"})
    llm = fake_llm(content=content, tool_args={**BOOK_19H, "appointment_time": "22:00"})
    reply = run("Je peux venir aussi à 22h ?", llm, now=paris(18, 40))

    assert reply.status == "replied"
    assert reply.mode == "WAITING"
    assert reply.message == "Je vous attends."
    assert db.query(models.Appointment).count() == 1

    kwargs = llm.chat.completions.create.call_args.kwargs
    assert "tools" not in kwargs
    assert kwargs["response_format"]["type"] == "json_schema"


@pytest.mark.parametrize("confidence, arrived", [("high", True), ("medium", True), ("low", False)])
def test_arrival_is_marked_by_confidence(run, db, booked_today, confidence, arrived):
    content = json.dumps({"message": "J'arrive, je vous ouvre.", "client_has_arrived": True, "confidence": confidence})
    run("Je suis devant la porte", fake_llm(content=content), now=paris(18, 58))

    db.refresh(booked_today)
    assert booked_today.client_arrived is arrived


def test_unparseable_waiting_output_falls_back_to_text(run, booked_today):
    reply = run("Vous êtes là ?", fake_llm(content="Oui, à tout de suite."), now=paris(18, 50))
    assert reply.status == "replied"
    assert reply.message == "Oui, à tout de suite."


def test_tool_call_ignored_when_catalog_is_incomplete(run, db, provider):
    db.query(models.ExtraOption).delete()
    db.commit()

    reply = run("oui", fake_llm(content="Je reviens vers vous.", tool_args=BOOK_19H))
    assert reply.status == "replied"
    assert db.query(models.Appointment).count() == 0
    assert db.query(models.AgentEvent).filter_by(event_type="configuration_error").count() == 1


def test_unknown_provider_is_ignored(session_factory, rules, sender):
    reply = run_agent("whatsapp:+41000000000", f"whatsapp:{CLIENT_NUMBER}", "Bonjour",
                      session_factory=session_factory, llm_client=fake_llm(content="x"),
                      sender=sender, now=paris(13), rules=rules, options=LLMOptions())
    assert reply.status == "ignored"
    sender.assert_not_called()


def test_rate_limited_before_inference(run, session_factory, provider, db):
    limiter = RateLimiter(session_factory, RateLimitPolicy(max_requests=1))
    llm = fake_llm(content="Bonjour")
    run("un", llm, limiter=limiter)

    with pytest.raises(RateLimitExceeded) as exc:
        run("deux", llm, limiter=limiter)
    assert exc.value.retry_after_seconds >= 1
    assert llm.chat.completions.create.call_count == 1
    # el mensaje entrante se guarda igual
    assert db.query(models.Message).filter_by(content="deux").count() == 1


def test_delivery_failure_propagates(run, db, sender):
    sender.side_effect = DeliveryError("twilio down")
    with pytest.raises(DeliveryError):
        run("Bonjour", fake_llm(content="Bonjour !"))
    assert db.query(models.Message).filter_by(direction=models.Direction.outgoing).count() == 0


def test_store_failure_is_a_retryable_dependency_error(rules, sender):
    session = MagicMock()
    session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))

    with pytest.raises(DependencyError) as exc:
        run_agent(f"whatsapp:{PROVIDER_NUMBER}", f"whatsapp:{CLIENT_NUMBER}", "Bonjour",
                  session_factory=lambda: session, llm_client=fake_llm(content="x"),
                  sender=sender, now=paris(13), rules=rules, options=LLMOptions())
    assert exc.value.reason == "store_failed"
    assert exc.value.retryable is True
    session.rollback.assert_called_once()
    sender.assert_not_called()


def test_token_usage_is_recorded_with_the_sent_message(run, db):
    llm = fake_llm(content="Bonjour !")
    llm.chat.completions.create.return_value.usage = SimpleNamespace(prompt_tokens=120, completion_tokens=8)
    run("Bonjour", llm)

    event = db.query(models.AgentEvent).filter_by(event_type="message_sent").one()
    assert event.payload["usage"] == {"prompt_tokens": 120, "completion_tokens": 8}
