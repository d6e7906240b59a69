from datetime import datetime, timezone

import pytest

from booking_agent.agent.modes import AgentMode, WaitingRequest, WorkflowRequest, build_request, select_mode
from booking_agent.agent.tools import BOOKING_TOOL_NAME, build_booking_tool
from booking_agent.domain import CatalogEnums
from booking_agent.errors import ConfigurationError
from booking_agent.services.pricing import build_price_catalog
from booking_agent.services.store import AppointmentSnapshot, ConversationData, ProviderData

from conftest import TODAY, paris, window

APPT = AppointmentSnapshot(id=5, appointment_date=TODAY, start_time="19:00", end_time="20:00",
                           service="1h", total_price=150.0, client_arrived=False)


def _provider(extras=(("Massage", 50),)):
    return ProviderData(
        provider_id=1,
        name="Studio Léa",
        address="Rue du Lac 12",
        windows=(window("18:30", "02:00"),),
        catalog=build_price_catalog([("30min", 100), ("1h", 150)], list(extras)),
    )


def _conversation(appt=None, history=()):
    return ConversationData(conversation_id=1, contact_phone="+41791111111", contact_name="Marc",
                            history=history, today_appointment=appt)


def test_select_mode():
    assert select_mode(None) is AgentMode.WORKFLOW
    assert select_mode(APPT) is AgentMode.WAITING


def test_workflow_request_exposes_closed_tool(rules):
    req = build_request(_provider(), _conversation(), "Bonjour", paris(16), rules)

    assert isinstance(req, WorkflowRequest)
    assert req.booking_enabled
    assert req.available_ranges == "18h30-2h (jusqu'à demain matin)"
    params = req.tool["function"]["parameters"]
    assert req.tool["function"]["name"] == BOOKING_TOOL_NAME
    assert params["properties"]["duration"]["enum"] == ["30min", "1h"]
    assert params["properties"]["selected_extras"]["items"]["enum"] == ["Massage"]
    assert params["additionalProperties"] is False
    assert "18h30-2h" in req.system_prompt
    assert req.messages[-1] == {"role": "user", "content": "Bonjour"}


def test_waiting_request_has_no_tool(rules):
    req = build_request(_provider(), _conversation(APPT), "Je suis devant", paris(18, 55), rules)

    assert isinstance(req, WaitingRequest)
    assert req.mode is AgentMode.WAITING
    assert not hasattr(req, "tool")
    assert req.response_format["json_schema"]["name"] == "ai_waiting_response"
    assert req.appointment.id == 5


def test_empty_extras_disable_booking_for_this_request(rules):
    req = build_request(_provider(extras=()), _conversation(), "Bonjour", paris(16), rules)

    assert isinstance(req, WorkflowRequest)
    assert req.tool is None
    assert not req.booking_enabled
    assert "extras" in req.configuration_error


def test_user_message_is_not_duplicated(rules):
    history = ({"role": "assistant", "content": "Bonjour !"}, {"role": "user", "content": "1h svp"})
    req = build_request(_provider(), _conversation(history=history), "1h svp", paris(16), rules)
    assert len(req.messages) == 2


@pytest.mark.parametrize("enums", [
    CatalogEnums(durations=(), extras=("Massage",)),
    CatalogEnums(durations=("1h",), extras=()),
])
def test_booking_tool_refuses_empty_enums(enums):
    with pytest.raises(ConfigurationError):
        build_booking_tool(enums)


def test_date_in_prompt_is_local(rules):
    # 23:30 UTC del 15 = 00:30 del 16 en París
    now = datetime(2025, 1, 15, 23, 30, tzinfo=timezone.utc)
    req = build_request(_provider(), _conversation(), "Bonjour", now, rules)
    assert "jeudi 16/01/2025, 0h30" in req.system_prompt
    # jueves sin ventanas
    assert req.available_ranges == "Pas dispo aujourd'hui"
