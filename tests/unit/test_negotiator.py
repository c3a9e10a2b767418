# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any

import pytest
from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close
from websockets.http11 import Request, Response

import session.negotiator as negotiator_mod
from auth.candidates import CandidateEndpoint, build_candidates
from errors import NegotiationError
from session.negotiator import AttemptFailed, ConnectionNegotiator, websocket_connector


BASE = "wss://realtime.example.test/v4/realtime"
SECRET_TOKEN = "header.payload.signature"


class FakeTransport:
    def __init__(self, name: str) -> None:
        self.name = name
        self.closed = False

    @property
    def close_code(self) -> int | None:
        return None

    async def send(self, message: str) -> None:
        pass

    async def recv(self) -> str | bytes | None:
        return None

    async def close(self) -> None:
        self.closed = True


class ScriptedConnector:
    """
    Outcome per call, in order: "open", "hang", or an exception instance.
    """

    def __init__(self, outcomes: list[Any]) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[str] = []
        self.opened: list[FakeTransport] = []

    async def __call__(self, candidate: CandidateEndpoint) -> FakeTransport:
        self.calls.append(candidate.name)
        outcome = self._outcomes[len(self.calls) - 1]
        if outcome == "open":
            transport = FakeTransport(candidate.name)
            self.opened.append(transport)
            return transport
        if outcome == "hang":
            await asyncio.sleep(3600)
        raise outcome


def _candidates(n: int) -> tuple[CandidateEndpoint, ...]:
    return tuple(
        CandidateEndpoint(name=f"c{i}", url=f"{BASE}?token={SECRET_TOKEN}&i={i}")
        for i in range(n)
    )


@pytest.fixture(autouse=True)
def _quiet_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(negotiator_mod, "log_event", emitted.append)
    return emitted


@pytest.mark.parametrize("k", [0, 1, 3])
def test_success_at_k_attempts_exactly_first_k_plus_one(k: int) -> None:
    outcomes: list[Any] = [AttemptFailed("rejected status=401")] * k + ["open", "open"]
    connector = ScriptedConnector(outcomes)
    candidates = _candidates(k + 2)

    result = asyncio.run(ConnectionNegotiator(connector, timeout_s=1.0).connect(candidates))

    assert connector.calls == [f"c{i}" for i in range(k + 1)]
    assert result.index == k
    assert result.candidate is candidates[k]
    assert result.transport is connector.opened[0]
    assert len(result.attempts) == k


def test_all_timeouts_produce_one_record_per_candidate() -> None:
    connector = ScriptedConnector(["hang", "hang", "hang"])

    with pytest.raises(NegotiationError) as exc_info:
        asyncio.run(ConnectionNegotiator(connector, timeout_s=0.01).connect(_candidates(3)))

    attempts = exc_info.value.attempts
    assert [a.index for a in attempts] == [0, 1, 2]
    assert [a.reason for a in attempts] == ["timeout", "timeout", "timeout"]
    assert str(exc_info.value) == "[1] c0: timeout; [2] c1: timeout; [3] c2: timeout"


def test_failure_reasons_are_recorded() -> None:
    connector = ScriptedConnector([
        AttemptFailed("closed code=1006 reason="),
        AttemptFailed("rejected status=401 server=token expired"),
        OSError("network down"),
    ])

    with pytest.raises(NegotiationError) as exc_info:
        asyncio.run(ConnectionNegotiator(connector, timeout_s=1.0).connect(_candidates(3)))

    reasons = [a.reason for a in exc_info.value.attempts]
    assert reasons[0] == "closed code=1006 reason="
    assert reasons[1] == "rejected status=401 server=token expired"
    assert reasons[2].startswith("error OSError(")


def test_no_candidates_fails_without_attempts() -> None:
    connector = ScriptedConnector([])

    with pytest.raises(NegotiationError) as exc_info:
        asyncio.run(ConnectionNegotiator(connector).connect(()))

    assert exc_info.value.attempts == ()
    assert not connector.calls


def test_logs_never_contain_the_token(_quiet_logs: list[dict[str, Any]]) -> None:
    connector = ScriptedConnector([AttemptFailed("rejected status=403"), "open"])
    candidates = build_candidates(SECRET_TOKEN, BASE)

    asyncio.run(ConnectionNegotiator(connector, timeout_s=1.0).connect(candidates))

    assert [e["event_type"] for e in _quiet_logs] == [
        "NEGOTIATION_ATTEMPT_FAILED",
        "NEGOTIATION_SUCCEEDED",
    ]
    assert SECRET_TOKEN not in repr(_quiet_logs)


def test_new_connect_call_starts_from_first_candidate() -> None:
    connector = ScriptedConnector([AttemptFailed("x"), "open", "open"])
    negotiator = ConnectionNegotiator(connector, timeout_s=1.0)
    candidates = _candidates(2)

    first = asyncio.run(negotiator.connect(candidates))
    second = asyncio.run(negotiator.connect(candidates))

    assert first.index == 1
    assert second.index == 0
    assert connector.calls == ["c0", "c1", "c0"]


def test_invalid_timeout_rejected() -> None:
    with pytest.raises(ValueError):
        ConnectionNegotiator(ScriptedConnector([]), timeout_s=0)


# -------------------------
# websockets transport
# -------------------------

async def _echo(conn: ServerConnection) -> None:
    async for message in conn:
        await conn.send(message)


def _reject_expired(conn: ServerConnection, request: Request) -> Response:
    return conn.respond(401, '{"error":{"message":"token expired"}}')


def test_websocket_rejection_reports_status_and_server_message() -> None:
    async def scenario() -> str:
        async with serve(_echo, "127.0.0.1", 0, process_request=_reject_expired) as server:
            port = server.sockets[0].getsockname()[1]
            candidate = CandidateEndpoint(name="local", url=f"ws://127.0.0.1:{port}/?token=t")
            with pytest.raises(AttemptFailed) as exc_info:
                await websocket_connector(candidate)
            return exc_info.value.reason

    assert asyncio.run(scenario()) == "rejected status=401 server=token expired"


def test_websocket_dropped_during_handshake_reports_abnormal_close() -> None:
    async def hang_up(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await reader.read(1024)
        writer.close()

    async def scenario() -> str:
        server = await asyncio.start_server(hang_up, "127.0.0.1", 0)
        async with server:
            port = server.sockets[0].getsockname()[1]
            candidate = CandidateEndpoint(name="local", url=f"ws://127.0.0.1:{port}/")
            with pytest.raises(AttemptFailed) as exc_info:
                await websocket_connector(candidate)
            return exc_info.value.reason

    assert asyncio.run(scenario()) == "closed code=1006 reason="


def test_websocket_closed_frame_during_connect_reports_code_and_reason(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def closing_connect(*args: Any, **kwargs: Any) -> None:
        raise ConnectionClosed(Close(4001, "quota exceeded"), None)

    monkeypatch.setattr(negotiator_mod, "connect", closing_connect)

    with pytest.raises(AttemptFailed) as exc_info:
        asyncio.run(websocket_connector(CandidateEndpoint(name="c", url=BASE)))

    assert exc_info.value.reason == "closed code=4001 reason=quota exceeded"


def test_websocket_transport_round_trip_and_close() -> None:
    async def scenario() -> tuple[str | bytes | None, str | bytes | None, int | None]:
        async with serve(_echo, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            transport = await websocket_connector(
                CandidateEndpoint(name="local", url=f"ws://127.0.0.1:{port}/")
            )
            await transport.send('{"type":"ping"}')
            echoed = await transport.recv()
            await transport.close()
            after_close = await transport.recv()
            return echoed, after_close, transport.close_code

    echoed, after_close, code = asyncio.run(scenario())

    assert echoed == '{"type":"ping"}'
    assert after_close is None
    assert code == 1000


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        (b'{"error":{"message":"token expired"}}', "token expired"),
        (b'{"message":"bad key"}', "bad key"),
        (b"Unauthorized\n", "Unauthorized"),
        (b"[1, 2]", None),
        (b"", None),
        (None, None),
    ],
)
def test_server_message_from_handshake_body(body: bytes | None, expected: str | None) -> None:
    assert negotiator_mod._server_message(body) == expected  # pylint: disable=protected-access
