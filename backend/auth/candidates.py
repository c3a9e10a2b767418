"""
Candidate connection endpoints.

The upstream service is inconsistent about where it accepts the token, so
the client tries several embeddings in a fixed priority order. The order is
data (TOKEN_EMBEDDINGS); adding a variant never touches negotiation logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
from urllib.parse import quote

from auth.token_minter import SignedToken, mint
from constants import AUTH_SCHEME_PREFIX


@dataclass(frozen=True)
class TokenEmbedding:
    """
    How a token is presented to the realtime endpoint.

    Exactly one of `param` (query-string name) or `header` (HTTP header
    name) is set. `bearer` prefixes the value with 'Bearer '.
    """
    name: str
    param: str | None = None
    header: str | None = None
    bearer: bool = False

    @property
    def query_only(self) -> bool:
        """True when the whole variant fits in a URL (usable by browsers)."""
        return self.header is None


@dataclass(frozen=True)
class CandidateEndpoint:
    """One fully-formed connection target."""
    name: str
    url: str
    headers: tuple[tuple[str, str], ...] = ()

    def redacted_url(self) -> str:
        """URL with the query string masked, for logs and diagnostics."""
        base, sep, _ = self.url.partition("?")
        return f"{base}?***" if sep else base


# Priority order derived from which embeddings the service accepted most often
QUERY_EMBEDDINGS: tuple[TokenEmbedding, ...] = (
    TokenEmbedding(name="query token", param="token"),
    TokenEmbedding(name="query access_token", param="access_token"),
    TokenEmbedding(name="query Authorization", param="Authorization"),
    TokenEmbedding(name="query token bearer", param="token", bearer=True),
    TokenEmbedding(name="query access_token bearer", param="access_token", bearer=True),
)

HEADER_EMBEDDINGS: tuple[TokenEmbedding, ...] = (
    TokenEmbedding(name="header Authorization", header="Authorization"),
    TokenEmbedding(name="header Authorization bearer", header="Authorization", bearer=True),
)

TOKEN_EMBEDDINGS: tuple[TokenEmbedding, ...] = QUERY_EMBEDDINGS + HEADER_EMBEDDINGS


def _value(token: str, embedding: TokenEmbedding) -> str:
    return f"{AUTH_SCHEME_PREFIX}{token}" if embedding.bearer else token


def build_candidates(
    token: SignedToken | str,
    base_url: str,
    embeddings: Iterable[TokenEmbedding] = QUERY_EMBEDDINGS,
) -> tuple[CandidateEndpoint, ...]:
    """
    Build the ordered candidate list for one token.

    Duplicates (same url and headers) are dropped; the first occurrence
    keeps its position.
    """
    raw = token.token if isinstance(token, SignedToken) else token
    base = base_url.rstrip("?")

    seen: set[tuple[str, tuple[tuple[str, str], ...]]] = set()
    out: list[CandidateEndpoint] = []

    for embedding in embeddings:
        value = _value(raw, embedding)
        if embedding.param is not None:
            joiner = "&" if "?" in base else "?"
            candidate = CandidateEndpoint(
                name=embedding.name,
                url=f"{base}{joiner}{embedding.param}={quote(value, safe='')}",
            )
        elif embedding.header is not None:
            candidate = CandidateEndpoint(
                name=embedding.name,
                url=base,
                headers=((embedding.header, value),),
            )
        else:
            raise ValueError(f"TokenEmbedding {embedding.name!r} has neither param nor header")

        key = (candidate.url, candidate.headers)
        if key in seen:
            continue
        seen.add(key)
        out.append(candidate)

    return tuple(out)


def candidates_from_urls(urls: Iterable[str]) -> tuple[CandidateEndpoint, ...]:
    """
    Wrap plain URLs (as returned by the token endpoint) as candidates.

    Preserves order and drops empty or repeated URLs.
    """
    seen: set[str] = set()
    out: list[CandidateEndpoint] = []
    for index, url in enumerate(urls):
        if not url or url in seen:
            continue
        seen.add(url)
        out.append(CandidateEndpoint(name=f"endpoint url {index + 1}", url=url))
    return tuple(out)


def merge_candidates(*groups: Iterable[CandidateEndpoint]) -> tuple[CandidateEndpoint, ...]:
    """Concatenate candidate groups in order, dropping later duplicates."""
    seen: set[tuple[str, tuple[tuple[str, str], ...]]] = set()
    out: list[CandidateEndpoint] = []
    for group in groups:
        for candidate in group:
            key = (candidate.url, candidate.headers)
            if key in seen:
                continue
            seen.add(key)
            out.append(candidate)
    return tuple(out)


@dataclass(frozen=True)
class MintResult:
    """A fresh token plus the ordered candidates that embed it."""
    token: SignedToken
    candidates: tuple[CandidateEndpoint, ...]

    @property
    def urls(self) -> tuple[str, ...]:
        """Query-string candidates only (what a browser-style client can use)."""
        return tuple(c.url for c in self.candidates if not c.headers)


def mint_with_candidates(
    credential_string: str,
    lifetime_seconds_hint: object = None,
    *,
    base_url: str,
    embeddings: Iterable[TokenEmbedding] = QUERY_EMBEDDINGS,
    now_ms: int | None = None,
) -> MintResult:
    """
    Mint a token and build its candidate list in one step.

    Raises:
        InvalidCredentialFormat if the credential is malformed.
    """
    token = mint(credential_string, lifetime_seconds_hint, now_ms=now_ms)
    return MintResult(token=token, candidates=build_candidates(token, base_url, embeddings))
