import pytest

from corex_core.domain.exceptions import ValidationError
from corex_core.domain.models import Plan, PlanStep
from corex_core.protocol import (
    INBOUND_TYPES,
    OUTBOUND_TYPES,
    ChatRequestData,
    ErrorData,
    Message,
    StreamingTokenData,
    create_chat_request,
    create_file_edit,
    create_plan_request,
    generate_message_id,
    is_inbound,
    is_outbound,
    is_streaming_message,
    snapshot,
    validate_message,
)


def test_message_ids_are_unique():
    ids = {generate_message_id("msg") for _ in range(1000)}
    assert len(ids) == 1000


def test_message_defaults_id_from_type():
    msg = Message(type="streaming/token", data=StreamingTokenData(request_id="r1", token="a", accumulated="a"))
    assert msg.id.startswith("streaming-token-")
    assert isinstance(msg.timestamp, int)
    assert msg.request_id == "r1"


def test_inbound_and_outbound_families_are_disjoint():
    assert not set(INBOUND_TYPES) & set(OUTBOUND_TYPES)
    assert "chat/request" in INBOUND_TYPES
    assert "planning/complete" in OUTBOUND_TYPES


def test_to_dict_uses_camel_case_and_drops_none():
    msg = create_chat_request("hello", request_id="r1", max_tokens=10)
    wire = msg.to_dict()
    assert wire["type"] == "chat/request"
    assert wire["data"] == {"requestId": "r1", "message": "hello", "maxTokens": 10}


def test_from_dict_parses_inbound_payload():
    msg = Message.from_dict(
        {
            "messageId": "m-1",
            "messageType": "chat/request",
            "timestamp": 123,
            "data": {"requestId": "r1", "message": "hi", "context": ["a"]},
        }
    )
    assert msg.id == "m-1"
    assert msg.timestamp == 123
    assert isinstance(msg.data, ChatRequestData)
    assert msg.data.context == ["a"]


def test_from_dict_keeps_unknown_type_raw():
    msg = Message.from_dict({"type": "chat/unknown", "data": {"x": 1}})
    assert msg.data == {"x": 1}
    assert not is_inbound(msg)


def test_from_dict_rejects_missing_fields():
    with pytest.raises(ValidationError):
        Message.from_dict({"type": "chat/request", "data": {"requestId": "r1"}})
    with pytest.raises(ValidationError):
        Message.from_dict({"data": {}})


def test_from_dict_rejects_mistyped_fields():
    with pytest.raises(ValidationError, match="message"):
        Message.from_dict({"type": "chat/request", "data": {"requestId": "r1", "message": None}})
    with pytest.raises(ValidationError, match="requestId|request_id"):
        Message.from_dict({"type": "chat/stop", "data": {"requestId": 7}})
    msg = Message.from_dict({"type": "context/request", "data": {"requestId": "c1", "query": "q", "maxFiles": 3}})
    assert msg.data.max_files == 3


def test_validate_message_and_guards():
    token = Message(type="streaming/token", data=StreamingTokenData(request_id="r", token="a", accumulated="a"))
    assert validate_message(token)
    assert is_outbound(token)
    assert is_streaming_message(token)

    mismatched = Message(type="streaming/token", data=ErrorData(error="x"))
    assert not validate_message(mismatched)

    edit = create_file_edit("src/a.ts")
    assert validate_message(edit)
    assert is_inbound(edit)


def test_plan_snapshot_is_independent():
    plan = Plan(id="p", task="t", steps=[PlanStep(id="step-0", description="one")])
    copy = snapshot(plan)
    plan.steps[0].advance("in-progress")
    assert copy.steps[0].status == "pending"


def test_plan_wire_format():
    msg = create_plan_request("build it", request_id="r1", context=["ctx"])
    assert msg.to_dict()["data"] == {"requestId": "r1", "task": "build it", "context": ["ctx"]}
