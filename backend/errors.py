"""
Error taxonomy for the voice bridge.

Four failure families, each with its own retry and surfacing policy:

ConfigError:
    Bad, missing or malformed credential. Never retried. Surfaced to the
    operator (token endpoint diag / server logs), not the end user.

NegotiationError:
    No candidate endpoint accepted the connection. Retried only when the
    user triggers connect() again.

ProtocolError:
    The remote sent an explicit error event. Terminates the session.

DeviceError:
    Capture device or audio output unavailable. The session does not
    proceed to capturing.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from session.negotiator import AttemptRecord


class VoiceBridgeError(Exception):
    """Base class for all voice bridge errors."""


# -------------------------
# Configuration
# -------------------------

class ConfigError(VoiceBridgeError):
    """Base class for configuration / credential errors."""


class CredentialProblem(str, Enum):
    """
    Distinguishable causes of a malformed credential string.

    Checked in this order; the first match wins.
    """
    EMPTY = "empty"
    MASKED = "masked"
    DELIMITER_COUNT = "delimiter_count"
    EMPTY_PART = "empty_part"


_PROBLEM_MESSAGES: dict[CredentialProblem, str] = {
    CredentialProblem.EMPTY: (
        "API key is empty: set ZHIPU_API_KEY to '{id}.{secret}'."
    ),
    CredentialProblem.MASKED: (
        "API key looks truncated (contains '...'): copy the full key, "
        "not the masked display value."
    ),
    CredentialProblem.DELIMITER_COUNT: (
        "API key format invalid: expected exactly one '.' as in '{id}.{secret}'."
    ),
    CredentialProblem.EMPTY_PART: (
        "API key format invalid: both id and secret must be non-empty in '{id}.{secret}'."
    ),
}


class InvalidCredentialFormat(ConfigError):
    """
    Raised when the credential string cannot be split into {id, secret}.

    The `problem` attribute identifies which check failed so callers can
    produce a targeted diagnostic.
    """

    def __init__(self, problem: CredentialProblem, detail: str | None = None) -> None:
        self.problem = problem
        message = _PROBLEM_MESSAGES[problem]
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class MissingCredential(ConfigError):
    """Raised when no API key is configured at all."""

    def __init__(self, variable: str = "ZHIPU_API_KEY") -> None:
        self.variable = variable
        super().__init__(
            f"{variable} is empty: configure it in the environment as '{{id}}.{{secret}}'."
        )


class TokenFetchError(ConfigError):
    """Raised when the token endpoint is unreachable or returns no token."""


# -------------------------
# Negotiation
# -------------------------

class NegotiationError(VoiceBridgeError):
    """
    Raised when every candidate endpoint failed.

    `attempts` holds one record per tried candidate, in order. The string
    form concatenates their diagnostics.
    """

    def __init__(self, attempts: tuple[AttemptRecord, ...]) -> None:
        self.attempts = attempts
        if attempts:
            summary = "; ".join(a.describe() for a in attempts)
        else:
            summary = "no candidate endpoints to try"
        super().__init__(summary)


# -------------------------
# Session protocol
# -------------------------

class ProtocolError(VoiceBridgeError):
    """The remote sent an explicit error event; kept as Session.failure."""


# -------------------------
# Devices
# -------------------------

class DeviceError(VoiceBridgeError):
    """Raised when the capture or playback device cannot be opened."""
