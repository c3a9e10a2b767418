"""
Signed, time-boxed token minting.

Turns a static '{id}.{secret}' API key into a short-lived HS256 token the
client can present when opening the realtime connection.

Invariants:
- The secret never leaves mint(); only the public id is placed in the payload.
- expires_at_ms - signed_at_ms == clamp_lifetime(hint) * 1000
- Malformed credentials fail before any signing happens.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import math
import time
from dataclasses import dataclass
from typing import Any

from constants import (
    AUTH_SCHEME_PREFIX,
    CREDENTIAL_DELIMITER,
    CREDENTIAL_MASK_MARKERS,
    CREDENTIAL_MIN_ID_LEN,
    CREDENTIAL_MIN_SECRET_LEN,
    JWT_HEADER,
    TOKEN_LIFETIME_DEFAULT_S,
    TOKEN_LIFETIME_MAX_S,
    TOKEN_LIFETIME_MIN_S,
)
from errors import CredentialProblem, InvalidCredentialFormat


# -------------------------
# Data
# -------------------------

@dataclass(frozen=True)
class Credential:
    """Public id and signing secret parsed from one API key string."""
    id: str
    secret: str

    def __repr__(self) -> str:
        return f"Credential(id={self.id!r}, secret=<{len(self.secret)} chars>)"


@dataclass(frozen=True)
class SignedToken:
    """
    A minted token.

    token:
        'header.payload.signature', each segment base64url without padding.
    expires_at_ms / signed_at_ms:
        Epoch milliseconds, identical to the payload's exp / timestamp.
    """
    token: str
    expires_at_ms: int
    signed_at_ms: int


# -------------------------
# Helpers
# -------------------------

def base64url(data: bytes) -> str:
    """base64url-encode without '=' padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _json_segment(obj: dict[str, Any]) -> str:
    return base64url(json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def strip_auth_scheme(raw: str) -> str:
    """Trim whitespace and an optional leading 'Bearer ' (case-insensitive)."""
    value = (raw or "").strip()
    if value.lower().startswith(AUTH_SCHEME_PREFIX.lower()):
        value = value[len(AUTH_SCHEME_PREFIX):].strip()
    return value


def looks_masked(value: str) -> bool:
    return any(marker in value for marker in CREDENTIAL_MASK_MARKERS)


def parse_credential(raw: str) -> Credential:
    """
    Split an API key into {id, secret}.

    Raises:
        InvalidCredentialFormat with problem set to the first failing check:
        EMPTY, MASKED, DELIMITER_COUNT, EMPTY_PART.
    """
    value = strip_auth_scheme(raw)

    if not value:
        raise InvalidCredentialFormat(CredentialProblem.EMPTY)

    if looks_masked(value):
        raise InvalidCredentialFormat(CredentialProblem.MASKED)

    dot_count = value.count(CREDENTIAL_DELIMITER)
    if dot_count != 1:
        raise InvalidCredentialFormat(
            CredentialProblem.DELIMITER_COUNT,
            detail=f"found {dot_count}",
        )

    key_id, _, secret = value.partition(CREDENTIAL_DELIMITER)
    if not key_id or not secret:
        raise InvalidCredentialFormat(CredentialProblem.EMPTY_PART)

    return Credential(id=key_id, secret=secret)


def clamp_lifetime(hint: Any) -> int | float:
    """
    Clamp a caller-supplied lifetime hint (seconds) into [60, 3600].

    None, non-numeric, NaN and zero fall back to the 600s default before
    clamping. A list (repeated query parameter) uses its first element.
    """
    if isinstance(hint, (list, tuple)):
        hint = hint[0] if hint else None

    value: float
    try:
        value = float(hint) if hint is not None and hint != "" else 0.0
    except (TypeError, ValueError):
        value = 0.0

    if math.isnan(value) or value == 0.0:
        value = float(TOKEN_LIFETIME_DEFAULT_S)

    value = min(float(TOKEN_LIFETIME_MAX_S), max(float(TOKEN_LIFETIME_MIN_S), value))
    return int(value) if value.is_integer() else value


def credential_diagnostics(raw: str | None) -> dict[str, Any]:
    """
    Non-secret facts about a configured credential string.

    Safe to return to an operator: never includes the id or secret text.
    """
    original = raw or ""
    value = strip_auth_scheme(original)
    key_id, sep, secret = value.partition(CREDENTIAL_DELIMITER)
    return {
        "configured": bool(original.strip()),
        "length": len(value),
        "dot_count": value.count(CREDENTIAL_DELIMITER),
        "looks_masked": looks_masked(value),
        "has_bearer_prefix": original.strip().lower().startswith(AUTH_SCHEME_PREFIX.lower()),
        "id_length": len(key_id) if sep else 0,
        "secret_length": len(secret) if sep else 0,
    }


def credential_warning(diag: dict[str, Any]) -> str | None:
    """
    Operator-facing warning for a parseable but implausible credential.

    Real keys have an id of at least 6 and a secret of at least 16
    characters; shorter parts usually mean a partial copy.
    """
    if diag["dot_count"] != 1:
        return None
    if diag["id_length"] < CREDENTIAL_MIN_ID_LEN or diag["secret_length"] < CREDENTIAL_MIN_SECRET_LEN:
        return (
            "API key looks abnormal: ensure the full '{id}.{secret}' was copied, "
            "not the masked display value."
        )
    return None


# -------------------------
# Signing
# -------------------------

def sign(credential: Credential, *, lifetime_s: int | float, now_ms: int) -> SignedToken:
    """HS256-sign a payload for `credential` valid for `lifetime_s` seconds."""
    expires_at_ms = now_ms + int(round(lifetime_s * 1000))
    payload = {
        "api_key": credential.id,
        "exp": expires_at_ms,
        "timestamp": now_ms,
    }

    signing_input = f"{_json_segment(JWT_HEADER)}.{_json_segment(payload)}"
    digest = hmac.new(
        credential.secret.encode("utf-8"),
        signing_input.encode("ascii"),
        hashlib.sha256,
    ).digest()

    return SignedToken(
        token=f"{signing_input}.{base64url(digest)}",
        expires_at_ms=expires_at_ms,
        signed_at_ms=now_ms,
    )


def mint(
    credential_string: str,
    lifetime_seconds_hint: Any = None,
    *,
    now_ms: int | None = None,
) -> SignedToken:
    """
    Mint a fresh token from an API key string.

    Args:
        credential_string: '{id}.{secret}', optionally prefixed by 'Bearer '.
        lifetime_seconds_hint: requested lifetime; clamped to [60, 3600].
        now_ms: signing time override (tests); defaults to wall clock.

    Raises:
        InvalidCredentialFormat if the credential is malformed.
    """
    credential = parse_credential(credential_string)
    lifetime_s = clamp_lifetime(lifetime_seconds_hint)
    signed_at = now_ms if now_ms is not None else time.time_ns() // 1_000_000
    return sign(credential, lifetime_s=lifetime_s, now_ms=signed_at)


def decode_segment(segment: str) -> dict[str, Any]:
    """Decode one base64url JSON segment (diagnostics and tests)."""
    padded = segment + "=" * (-len(segment) % 4)
    return json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
