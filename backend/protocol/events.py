"""
JSON event protocol for the realtime connection.

Outbound:
    Every event carries event_id (uuid4) and client_timestamp (epoch ms),
    placed before the type-specific fields.

        session.update              {session: {...}}
        input_audio_buffer.append   {audio: <base64 PCM16 @ 16 kHz>}
        input_audio_buffer.clear
        input_audio_buffer.commit
        response.create

Inbound (handled):
        error                                              error.message | message
        response.audio_transcript.delta / .done            delta
        conversation.item.input_audio_transcription.completed  transcript | text
        response.audio.delta                               delta | audio

Anything else is parsed but left for the caller to ignore.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping

from audio.pcm import b64encode_pcm
from constants import (
    EVT_INPUT_AUDIO_APPEND,
    EVT_INPUT_AUDIO_CLEAR,
    EVT_INPUT_AUDIO_COMMIT,
    EVT_RESPONSE_CREATE,
    EVT_SESSION_UPDATE,
)
from observability.logger import now_ms


# -------------------------
# Outbound
# -------------------------

def new_event_id() -> str:
    return str(uuid.uuid4())


def outbound(event_type: str, **fields: Any) -> dict[str, Any]:
    """Build one outbound event with the common envelope fields."""
    event: dict[str, Any] = {
        "event_id": new_event_id(),
        "client_timestamp": now_ms(),
        "type": event_type,
    }
    event.update(fields)
    return event


def session_update(session: Mapping[str, Any]) -> dict[str, Any]:
    return outbound(EVT_SESSION_UPDATE, session=dict(session))


def input_audio_append(pcm_bytes: bytes) -> dict[str, Any]:
    return outbound(EVT_INPUT_AUDIO_APPEND, audio=b64encode_pcm(pcm_bytes))


def input_audio_clear() -> dict[str, Any]:
    return outbound(EVT_INPUT_AUDIO_CLEAR)


def input_audio_commit() -> dict[str, Any]:
    return outbound(EVT_INPUT_AUDIO_COMMIT)


def response_create() -> dict[str, Any]:
    return outbound(EVT_RESPONSE_CREATE)


def encode(event: Mapping[str, Any]) -> str:
    """Compact JSON text frame. Non-ASCII text (instructions) is kept as-is."""
    return json.dumps(event, ensure_ascii=False, separators=(",", ":"))


# -------------------------
# Inbound
# -------------------------

class InboundParseError(ValueError):
    """Raised when a text frame is not a JSON object with a string `type`."""


@dataclass(frozen=True)
class InboundEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)


def parse_inbound(raw: str | bytes) -> InboundEvent:
    """
    Parse one inbound frame.

    Raises:
        InboundParseError for non-JSON, non-object or untyped frames.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InboundParseError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise InboundParseError("event is not a JSON object")

    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise InboundParseError("event has no type")

    return InboundEvent(type=event_type, payload=data)


def error_message(payload: Mapping[str, Any]) -> str:
    """error.message, then top-level message, then a fixed fallback."""
    err = payload.get("error")
    if isinstance(err, Mapping):
        message = err.get("message")
        if isinstance(message, str) and message:
            return message
    message = payload.get("message")
    if isinstance(message, str) and message:
        return message
    return "unknown error"


def transcript_delta(payload: Mapping[str, Any]) -> str:
    delta = payload.get("delta")
    return delta if isinstance(delta, str) else ""


def user_transcript(payload: Mapping[str, Any]) -> str:
    for key in ("transcript", "text"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def audio_delta(payload: Mapping[str, Any]) -> str:
    for key in ("delta", "audio"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return ""
