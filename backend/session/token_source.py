"""
Where a client session gets its token and candidate endpoints.

LocalTokenSource:
    Mints in-process from an API key (operator tools, single-machine use).

HttpTokenSource:
    Fetches from the token endpoint (server/routes.py). The endpoint's
    query-string URLs come first, in the order served, followed by any
    client-side embeddings (e.g. header auth, which the endpoint cannot
    express as a URL).
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol

import httpx

from auth.candidates import (
    QUERY_EMBEDDINGS,
    MintResult,
    TokenEmbedding,
    build_candidates,
    candidates_from_urls,
    merge_candidates,
    mint_with_candidates,
)
from auth.token_minter import SignedToken, decode_segment
from constants import REALTIME_BASE_URL_DEFAULT
from errors import MissingCredential, TokenFetchError
from observability.logger import log_event, now_ms


class TokenSource(Protocol):
    async def acquire(self, *, session_id: str | None = None) -> MintResult: ...


class LocalTokenSource:
    """Mints with a locally held API key."""

    def __init__(
        self,
        api_key: str,
        *,
        lifetime_s: Any = None,
        base_url: str = REALTIME_BASE_URL_DEFAULT,
        embeddings: Iterable[TokenEmbedding] = QUERY_EMBEDDINGS,
    ) -> None:
        self._api_key = api_key
        self._lifetime_s = lifetime_s
        self._base_url = base_url
        self._embeddings = tuple(embeddings)

    async def acquire(self, *, session_id: str | None = None) -> MintResult:
        if not (self._api_key or "").strip():
            raise MissingCredential()
        result = mint_with_candidates(
            self._api_key,
            self._lifetime_s,
            base_url=self._base_url,
            embeddings=self._embeddings,
        )
        log_event({
            "event_type": "TOKEN_MINTED",
            "session_id": session_id,
            "source": "local",
            "expires_at_ms": result.token.expires_at_ms,
            "candidates": len(result.candidates),
        })
        return result


class HttpTokenSource:
    """
    GETs a token from the token endpoint.

    `extra_embeddings` are appended after the served URLs, built against
    `base_url`. `transport` lets tests substitute httpx.MockTransport.
    """

    def __init__(
        self,
        endpoint_url: str,
        *,
        lifetime_s: Any = None,
        base_url: str = REALTIME_BASE_URL_DEFAULT,
        extra_embeddings: Iterable[TokenEmbedding] = (),
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._lifetime_s = lifetime_s
        self._base_url = base_url
        self._extra = tuple(extra_embeddings)
        self._timeout_s = timeout_s
        self._transport = transport

    async def acquire(self, *, session_id: str | None = None) -> MintResult:
        params = {}
        if self._lifetime_s is not None:
            params["expSeconds"] = str(self._lifetime_s)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s,
                transport=self._transport,
            ) as client:
                resp = await client.get(self._endpoint_url, params=params)
        except httpx.HTTPError as e:
            raise TokenFetchError(f"token endpoint unreachable: {e!r}") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if resp.status_code != 200:
            message = body.get("error") or f"HTTP {resp.status_code}"
            raise TokenFetchError(f"token endpoint error: {message}")

        raw_token = body.get("token")
        if not isinstance(raw_token, str) or not raw_token:
            raise TokenFetchError("token endpoint returned no token")

        token = SignedToken(
            token=raw_token,
            expires_at_ms=int(body.get("expiresAtMs") or 0),
            signed_at_ms=_signed_at(raw_token),
        )

        urls = [u for u in (body.get("wsUrls") or []) if isinstance(u, str)]
        if isinstance(body.get("wsUrl"), str):
            urls.append(body["wsUrl"])

        served = candidates_from_urls(urls)
        if not served:
            served = build_candidates(token, self._base_url, QUERY_EMBEDDINGS)
        candidates = merge_candidates(served, build_candidates(token, self._base_url, self._extra))

        log_event({
            "event_type": "TOKEN_FETCHED",
            "session_id": session_id,
            "source": "http",
            "expires_at_ms": token.expires_at_ms,
            "candidates": len(candidates),
        })
        return MintResult(token=token, candidates=candidates)


def _signed_at(raw_token: str) -> int:
    """Payload timestamp when readable, else the local clock."""
    parts = raw_token.split(".")
    if len(parts) == 3:
        try:
            payload = decode_segment(parts[1])
        except ValueError:
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("timestamp"), int):
            return payload["timestamp"]
    return now_ms()
