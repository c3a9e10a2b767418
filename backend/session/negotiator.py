"""
Connection negotiation across ordered candidate endpoints.

Tries each CandidateEndpoint in priority order, one at a time, each with
its own timeout. The first one that opens wins; the rest are never tried.
If none opens, a NegotiationError carries one AttemptRecord per candidate.

Responsibilities:
- Sequential attempts with a per-attempt timeout
- Closing anything a failed attempt left half-open
- Per-attempt diagnostics (logged with tokens redacted)

Non-responsibilities:
- No retry across connect() calls; no memory of which candidate won last time
- No protocol events (ProtocolSession sends session.update after open)
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, Sequence

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidMessage, InvalidStatus

from auth.candidates import CandidateEndpoint
from constants import CONNECT_ATTEMPT_TIMEOUT_S, WS_MAX_MESSAGE_BYTES
from errors import NegotiationError
from observability.logger import log_event
from observability.metrics import timed


# ---------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------

class Transport(Protocol):
    """
    The duplex text channel a session runs over.

    recv() returns None once the channel is closed; send() raises
    ConnectionError on a closed channel.
    """

    @property
    def close_code(self) -> int | None: ...

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes | None: ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """Transport over a websockets client connection."""

    def __init__(self, conn: ClientConnection) -> None:
        self._conn = conn

    @property
    def close_code(self) -> int | None:
        return self._conn.close_code

    async def send(self, message: str) -> None:
        try:
            await self._conn.send(message)
        except ConnectionClosed as e:
            raise ConnectionError(f"transport closed: {e}") from e

    async def recv(self) -> str | bytes | None:
        try:
            return await self._conn.recv()
        except ConnectionClosed:
            return None

    async def close(self) -> None:
        await self._conn.close()


Connector = Callable[[CandidateEndpoint], Awaitable[Transport]]


class AttemptFailed(Exception):
    """Raised by a connector with a ready-made diagnostic reason."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


def _server_message(body: bytes | None) -> str | None:
    """Best-effort error text from a rejected handshake's response body."""
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        text = body.decode("utf-8", errors="replace").strip()
        return text[:200] or None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if data.get("message"):
            return str(data["message"])
    return None


async def websocket_connector(candidate: CandidateEndpoint) -> Transport:
    """Open a websocket to one candidate. Timeout is applied by the caller."""
    try:
        conn = await connect(
            candidate.url,
            additional_headers=list(candidate.headers) or None,
            max_size=WS_MAX_MESSAGE_BYTES,
            open_timeout=None,
        )
    except InvalidStatus as e:
        reason = f"rejected status={e.response.status_code}"
        message = _server_message(e.response.body)
        if message:
            reason = f"{reason} server={message}"
        raise AttemptFailed(reason) from e
    except ConnectionClosed as e:
        code = e.rcvd.code if e.rcvd is not None else 1006
        text = e.rcvd.reason if e.rcvd is not None else ""
        raise AttemptFailed(f"closed code={code} reason={text}") from e
    except InvalidMessage as e:
        # Peer dropped the socket before a complete HTTP response
        raise AttemptFailed("closed code=1006 reason=") from e
    return WebSocketTransport(conn)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class AttemptRecord:
    """Outcome of one failed candidate."""
    index: int
    name: str
    url_redacted: str
    reason: str
    elapsed_ms: int

    def describe(self) -> str:
        return f"[{self.index + 1}] {self.name}: {self.reason}"


@dataclass(frozen=True)
class NegotiatedConnection:
    transport: Transport
    candidate: CandidateEndpoint
    index: int
    # Failures before the winning candidate
    attempts: tuple[AttemptRecord, ...]


# ---------------------------------------------------------------------
# Negotiator
# ---------------------------------------------------------------------

class ConnectionNegotiator:

    def __init__(
        self,
        connector: Connector = websocket_connector,
        *,
        timeout_s: float = CONNECT_ATTEMPT_TIMEOUT_S,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        self._connector = connector
        self._timeout_s = timeout_s

    async def connect(
        self,
        candidates: Sequence[CandidateEndpoint],
        *,
        session_id: str | None = None,
    ) -> NegotiatedConnection:
        """
        Try candidates in order until one opens.

        Raises:
            NegotiationError if every candidate failed (or there were none).
        """
        attempts: list[AttemptRecord] = []

        for index, candidate in enumerate(candidates):
            started = time.monotonic()
            with timed(
                "negotiation_attempt",
                session_id=session_id,
                phase="connecting",
                details={"index": index, "candidate": candidate.name},
            ):
                transport, reason = await self._attempt(candidate)

            if transport is not None:
                log_event({
                    "event_type": "NEGOTIATION_SUCCEEDED",
                    "session_id": session_id,
                    "index": index,
                    "candidate": candidate.name,
                    "url": candidate.redacted_url(),
                    "failed_before": len(attempts),
                })
                return NegotiatedConnection(
                    transport=transport,
                    candidate=candidate,
                    index=index,
                    attempts=tuple(attempts),
                )

            record = AttemptRecord(
                index=index,
                name=candidate.name,
                url_redacted=candidate.redacted_url(),
                reason=reason,
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )
            attempts.append(record)
            log_event({
                "event_type": "NEGOTIATION_ATTEMPT_FAILED",
                "session_id": session_id,
                "index": index,
                "candidate": record.name,
                "url": record.url_redacted,
                "header_names": [name for name, _ in candidate.headers],
                "reason": record.reason,
                "elapsed_ms": record.elapsed_ms,
            })

        error = NegotiationError(tuple(attempts))
        log_event({
            "event_type": "NEGOTIATION_FAILED",
            "session_id": session_id,
            "attempts": len(attempts),
            "error": str(error),
        })
        raise error

    async def _attempt(self, candidate: CandidateEndpoint) -> tuple[Transport | None, str]:
        task = asyncio.ensure_future(self._connector(candidate))
        try:
            transport = await asyncio.wait_for(asyncio.shield(task), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            await self._discard(task)
            return None, "timeout"
        except AttemptFailed as e:
            return None, e.reason
        except asyncio.CancelledError:
            await self._discard(task)
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            return None, f"error {e!r}"
        return transport, ""

    @staticmethod
    async def _discard(task: asyncio.Future[Transport]) -> None:
        """Cancel a pending attempt; close it if it opened in the meantime."""
        if not task.done():
            task.cancel()
        try:
            transport = await task
        except asyncio.CancelledError:
            return
        except Exception:  # pylint: disable=broad-exception-caught
            return
        try:
            await transport.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({"event_type": "NEGOTIATION_DISCARD_CLOSE_FAILED", "error": repr(e)})
