# pylint: disable=missing-module-docstring,missing-function-docstring

import base64
import json
import uuid

import pytest

from config import SessionProfile
from protocol import events


def test_outbound_envelope_precedes_type_fields() -> None:
    event = events.input_audio_append(b"\x01\x02")

    assert list(event)[:3] == ["event_id", "client_timestamp", "type"]
    assert uuid.UUID(event["event_id"]).version == 4
    assert isinstance(event["client_timestamp"], int)
    assert event["type"] == "input_audio_buffer.append"
    assert base64.b64decode(event["audio"]) == b"\x01\x02"


def test_event_ids_are_unique() -> None:
    ids = {events.response_create()["event_id"] for _ in range(50)}
    assert len(ids) == 50


def test_control_event_types() -> None:
    assert events.input_audio_clear()["type"] == "input_audio_buffer.clear"
    assert events.input_audio_commit()["type"] == "input_audio_buffer.commit"
    assert events.response_create()["type"] == "response.create"


def test_session_update_carries_profile() -> None:
    event = events.session_update(SessionProfile().to_session_payload())
    session = json.loads(events.encode(event))["session"]

    assert event["type"] == "session.update"
    assert session["modalities"] == ["audio", "text"]
    assert session["input_audio_format"] == "pcm16"
    assert session["output_audio_format"] == "pcm"
    assert session["beta_fields"]["greeting_config"]["enable"] is True


def test_encode_keeps_non_ascii() -> None:
    text = events.encode({"type": "x", "text": "海皮"})
    assert "海皮" in text


def test_parse_inbound() -> None:
    event = events.parse_inbound('{"type": "response.audio.delta", "delta": "AAA="}')
    assert event.type == "response.audio.delta"
    assert events.audio_delta(event.payload) == "AAA="


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"delta": "x"}', '{"type": ""}', b"\xff"])
def test_parse_inbound_rejects_malformed_frames(raw: str | bytes) -> None:
    with pytest.raises(events.InboundParseError):
        events.parse_inbound(raw)


def test_error_message_fallbacks() -> None:
    assert events.error_message({"error": {"message": "bad token"}, "message": "outer"}) == "bad token"
    assert events.error_message({"error": {}, "message": "outer"}) == "outer"
    assert events.error_message({"error": "text"}) == "unknown error"
    assert events.error_message({}) == "unknown error"


def test_payload_field_alternatives() -> None:
    assert events.user_transcript({"transcript": "hi"}) == "hi"
    assert events.user_transcript({"text": "hello"}) == "hello"
    assert events.user_transcript({}) == ""
    assert events.audio_delta({"audio": "QQ=="}) == "QQ=="
    assert events.audio_delta({"delta": 5}) == ""
    assert events.transcript_delta({"delta": "ab"}) == "ab"
