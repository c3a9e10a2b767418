"""
Session record, lifecycle phases and observer notices.

One Session exists per client instance at a time. ProtocolSession replaces
it with a fresh object on every connect(); nothing here carries over.

This is pure data owned by ProtocolSession. It contains no protocol logic.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Union


class SessionPhase(str, Enum):
    """
    Lifecycle phase.

    idle -> connecting -> ready <-> capturing
    any  -> closed | error
    """
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    CAPTURING = "capturing"
    CLOSED = "closed"
    ERROR = "error"

    @property
    def is_open(self) -> bool:
        """True while the transport is expected to be usable."""
        return self in (SessionPhase.READY, SessionPhase.CAPTURING)


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex[:12]}"


@dataclass
class Session:
    """Mutable record for a single conversation attempt."""

    session_id: str = field(default_factory=new_session_id)
    phase: SessionPhase = SessionPhase.IDLE
    created_at: float = field(default_factory=time.time)

    # Name of the candidate that opened; None until ready
    active_endpoint: str | None = None
    last_error: str | None = None
    # Typed cause behind last_error: ProtocolError, NegotiationError, ConfigError, DeviceError
    failure: Exception | None = None


# ---------------------------------------------------------------------
# Notices (observer-facing)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PhaseChanged:
    session_id: str
    previous: SessionPhase
    current: SessionPhase


@dataclass(frozen=True)
class AssistantTranscript:
    session_id: str
    text: str


@dataclass(frozen=True)
class UserTranscript:
    session_id: str
    text: str


@dataclass(frozen=True)
class SessionFailed:
    session_id: str
    message: str
    error: Exception | None = None


@dataclass(frozen=True)
class SessionClosed:
    session_id: str
    reason: str | None = None


Notice = Union[PhaseChanged, AssistantTranscript, UserTranscript, SessionFailed, SessionClosed]
NoticeCallback = Callable[[Notice], None]
