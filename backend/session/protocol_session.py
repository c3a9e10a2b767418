"""
ProtocolSession: one push-to-talk conversation over a negotiated transport.

Phases (see session_state.SessionPhase):

    idle -> connecting -> ready <-> capturing
    any  -> closed (shutdown / remote close) | error (failure / error event)

Responsibilities:
- Acquire a token, negotiate a candidate, send session.update
- Gate outbound audio on the capturing phase
- Frame capture audio (CaptureChunker) and schedule inbound audio
  (PlaybackScheduler)
- Dispatch inbound events to observers as typed notices

Threading:
- Everything here runs on one asyncio event loop.
- The capture device callback runs on a PortAudio thread and only hands a
  copied block to the loop via call_soon_threadsafe.
- One outbound asyncio.Queue drained by a single send loop keeps append /
  commit / response.create strictly ordered.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol

import numpy as np

from audio.capture_chunker import CaptureChunker
from audio.playback import PlaybackOutput, PlaybackScheduler
from config import SessionProfile
from constants import (
    EVT_AUDIO_DELTA,
    EVT_ERROR,
    EVT_INPUT_TRANSCRIPTION_COMPLETED,
    EVT_TRANSCRIPT_DELTA,
    EVT_TRANSCRIPT_DONE,
    OUTBOUND_QUEUE_MAX,
)
from errors import DeviceError, ProtocolError
from observability.logger import log_event
from observability.metrics import timed
from protocol import events
from session.negotiator import ConnectionNegotiator, NegotiatedConnection, Transport
from session.session_state import (
    AssistantTranscript,
    Notice,
    NoticeCallback,
    PhaseChanged,
    Session,
    SessionClosed,
    SessionFailed,
    SessionPhase,
    UserTranscript,
)
from session.token_source import TokenSource


# ---------------------------------------------------------------------
# Device seams
# ---------------------------------------------------------------------

class CaptureDevice(Protocol):
    sample_rate: int

    def start(self, on_block: Callable[[np.ndarray], None]) -> None: ...

    def close(self) -> None: ...


class OutputDevice(PlaybackOutput, Protocol):
    def start(self) -> None: ...

    def close(self) -> None: ...


CaptureFactory = Callable[[], CaptureDevice]
OutputFactory = Callable[[], OutputDevice]


# ---------------------------------------------------------------------
# ProtocolSession
# ---------------------------------------------------------------------

class ProtocolSession:
    """
    Client-side session state machine.

    connect() and shutdown() are coroutines; the capture controls are
    plain methods that must be called on the event loop thread and return
    immediately.
    """

    def __init__(
        self,
        *,
        token_source: TokenSource,
        session_profile: SessionProfile | None = None,
        negotiator: ConnectionNegotiator | None = None,
        capture_factory: CaptureFactory | None = None,
        output_factory: OutputFactory | None = None,
        on_notice: NoticeCallback | None = None,
        latency_guard_s: float | None = None,
    ) -> None:
        self._token_source = token_source
        self._profile = session_profile or SessionProfile()
        self._negotiator = negotiator or ConnectionNegotiator()
        self._capture_factory = capture_factory
        self._output_factory = output_factory
        self._on_notice = on_notice
        self._latency_guard_s = latency_guard_s

        self._session = Session()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connect_task: asyncio.Task[NegotiatedConnection] | None = None

        self._transport: Transport | None = None
        self._outbound: asyncio.Queue[dict[str, Any] | None] | None = None
        self._send_task: asyncio.Task[None] | None = None
        self._recv_task: asyncio.Task[None] | None = None

        self._capture: CaptureDevice | None = None
        self._chunker: CaptureChunker | None = None
        self._output: OutputDevice | None = None
        self._scheduler: PlaybackScheduler | None = None

        self._assistant_parts: list[str] = []
        self.frames_dropped: int = 0

    # -----------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def phase(self) -> SessionPhase:
        return self._session.phase

    @property
    def scheduler(self) -> PlaybackScheduler | None:
        return self._scheduler

    # -----------------------------------------------------------------
    # connect
    # -----------------------------------------------------------------

    async def connect(self) -> Session:
        """
        Start a fresh session and negotiate a connection.

        A call while already connecting is a no-op returning the current
        session. On failure the session ends in `error` with last_error
        and failure set, and the exception propagates. If shutdown() lands
        while negotiating, negotiation stops and the closed session is
        returned.
        """
        if self._session.phase is SessionPhase.CONNECTING:
            log_event({
                "event_type": "SESSION_CONNECT_IGNORED",
                "session_id": self._session.session_id,
                "reason": "already connecting",
            })
            return self._session

        await self._teardown()
        self._loop = asyncio.get_running_loop()
        session = Session()
        self._session = session
        self._set_phase(SessionPhase.CONNECTING)

        pending = asyncio.create_task(self._negotiate(session))
        self._connect_task = pending
        try:
            negotiated = await pending
        except asyncio.CancelledError:
            if self._superseded(session):
                log_event({
                    "event_type": "SESSION_CONNECT_ABANDONED",
                    "session_id": session.session_id,
                    "phase": session.phase.value,
                })
                return session
            # The caller cancelled connect() itself
            self._set_phase(SessionPhase.CLOSED)
            raise
        except Exception as e:
            if not self._superseded(session):
                self._fail(str(e) or repr(e), e)
            raise
        finally:
            if self._connect_task is pending:
                self._connect_task = None

        if self._superseded(session):
            await _close_quietly(negotiated.transport, session.session_id)
            return session

        self._transport = negotiated.transport
        session.active_endpoint = negotiated.candidate.name

        try:
            self._open_output()
        except DeviceError as e:
            self._fail(str(e), e)
            await self._teardown()
            raise

        self._outbound = asyncio.Queue(maxsize=OUTBOUND_QUEUE_MAX)
        self._assistant_parts.clear()
        self._set_phase(SessionPhase.READY)
        self._enqueue(events.session_update(self._profile.to_session_payload()))

        self._send_task = asyncio.create_task(
            self._send_loop(session, negotiated.transport, self._outbound)
        )
        self._recv_task = asyncio.create_task(self._recv_loop(session, negotiated.transport))
        return session

    async def _negotiate(self, session: Session) -> NegotiatedConnection:
        with timed("session_connect", session_id=session.session_id, phase="connecting"):
            minted = await self._token_source.acquire(session_id=session.session_id)
            return await self._negotiator.connect(
                minted.candidates,
                session_id=session.session_id,
            )

    def _superseded(self, session: Session) -> bool:
        """True once shutdown() or a newer connect() took over from `session`."""
        return self._session is not session or session.phase is not SessionPhase.CONNECTING


    # -----------------------------------------------------------------
    # Capture control
    # -----------------------------------------------------------------

    def start_capture(self) -> bool:
        """
        ready -> capturing. Opens the capture device on first use.

        Returns False (no-op) outside `ready`.

        Raises:
            DeviceError if the capture device cannot be opened; the session
            stays `ready`.
        """
        if self._session.phase is not SessionPhase.READY:
            self._log_noop("start_capture")
            return False

        if self._capture is None:
            self._open_capture()

        if self._chunker is not None:
            self._chunker.reset()
        self._enqueue(events.input_audio_clear())
        self._set_phase(SessionPhase.CAPTURING)
        return True

    def stop_capture_and_respond(self) -> bool:
        """
        capturing -> ready. Flushes the final frame, then commits the input
        buffer and asks for a response, in that order.
        """
        if self._session.phase is not SessionPhase.CAPTURING:
            self._log_noop("stop_capture_and_respond")
            return False

        if self._chunker is not None:
            self._chunker.flush()
        self._enqueue(events.input_audio_commit())
        self._enqueue(events.response_create())
        self._set_phase(SessionPhase.READY)
        return True

    def send_audio_frame(self, frame: bytes) -> bool:
        """Queue one PCM16 frame. Dropped unless capturing on an open transport."""
        if self._session.phase is not SessionPhase.CAPTURING or self._transport is None:
            self.frames_dropped += 1
            return False
        return self._enqueue(events.input_audio_append(frame))

    def handle_capture_block(self, block: np.ndarray) -> None:
        """Loop-side entry for one native-rate capture block."""
        if self._session.phase is not SessionPhase.CAPTURING or self._chunker is None:
            return
        self._chunker.push(block)

    def _on_capture_block(self, block: np.ndarray) -> None:
        # PortAudio thread
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self.handle_capture_block, block)
        except RuntimeError:
            # Loop already closed during shutdown
            return

    # -----------------------------------------------------------------
    # shutdown
    # -----------------------------------------------------------------

    async def shutdown(self) -> None:
        """Close everything. Any phase -> closed. Idempotent, never raises."""
        session = self._session
        if session.phase is not SessionPhase.CLOSED:
            was_live = session.phase in (
                SessionPhase.CONNECTING,
                SessionPhase.READY,
                SessionPhase.CAPTURING,
            )
            self._set_phase(SessionPhase.CLOSED)
            if was_live:
                self._notify(SessionClosed(session_id=session.session_id, reason="shutdown"))
        await self._teardown()

    # -----------------------------------------------------------------
    # Loops
    # -----------------------------------------------------------------

    async def _send_loop(
        self,
        session: Session,
        transport: Transport,
        queue: asyncio.Queue[dict[str, Any] | None],
    ) -> None:
        while True:
            event = await queue.get()
            if event is None:
                return
            try:
                await transport.send(events.encode(event))
            except ConnectionError as e:
                log_event({
                    "event_type": "OUTBOUND_SEND_FAILED",
                    "session_id": session.session_id,
                    "type": event.get("type"),
                    "error": str(e),
                })
                return

    async def _recv_loop(self, session: Session, transport: Transport) -> None:
        while True:
            raw = await transport.recv()
            if raw is None:
                break
            if self._dispatch(session, raw):
                await self._teardown()
                return

        if self._session is session and session.phase.is_open:
            code = transport.close_code or 0
            message = f"disconnected (code={code})"
            session.last_error = message
            log_event({
                "event_type": "SESSION_REMOTE_CLOSED",
                "session_id": session.session_id,
                "close_code": code,
            })
            self._set_phase(SessionPhase.CLOSED)
            self._notify(SessionClosed(session_id=session.session_id, reason=message))
            await self._teardown()

    # -----------------------------------------------------------------
    # Inbound dispatch
    # -----------------------------------------------------------------

    def _dispatch(self, session: Session, raw: str | bytes) -> bool:
        """Handle one inbound frame. Returns True when the session must end."""
        try:
            event = events.parse_inbound(raw)
        except events.InboundParseError as e:
            log_event({
                "event_type": "INBOUND_UNPARSEABLE",
                "session_id": session.session_id,
                "error": str(e),
            })
            return False

        payload = event.payload

        if event.type == EVT_ERROR:
            message = events.error_message(payload)
            error = ProtocolError(message)
            session.last_error = message
            session.failure = error
            log_event({
                "event_type": "SESSION_REMOTE_ERROR",
                "session_id": session.session_id,
                "message": message,
            })
            self._set_phase(SessionPhase.ERROR)
            self._notify(SessionFailed(session_id=session.session_id, message=message, error=error))
            return True

        if event.type == EVT_TRANSCRIPT_DELTA:
            self._assistant_parts.append(events.transcript_delta(payload))

        elif event.type == EVT_TRANSCRIPT_DONE:
            text = "".join(self._assistant_parts).strip()
            self._assistant_parts.clear()
            if text:
                self._notify(AssistantTranscript(session_id=session.session_id, text=text))

        elif event.type == EVT_INPUT_TRANSCRIPTION_COMPLETED:
            text = events.user_transcript(payload)
            if text:
                self._notify(UserTranscript(session_id=session.session_id, text=text))

        elif event.type == EVT_AUDIO_DELTA:
            audio = events.audio_delta(payload)
            if audio and self._scheduler is not None:
                self._scheduler.enqueue(audio)

        else:
            log_event({
                "event_type": "INBOUND_EVENT_IGNORED",
                "session_id": session.session_id,
                "type": event.type,
            })

        return False

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _enqueue(self, event: dict[str, Any]) -> bool:
        queue = self._outbound
        if queue is None or self._transport is None or not self._session.phase.is_open:
            return False
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            log_event({
                "event_type": "OUTBOUND_QUEUE_FULL",
                "session_id": self._session.session_id,
                "type": event.get("type"),
            })
            return False
        return True

    def _open_output(self) -> None:
        if self._output_factory is None:
            return
        output = self._output_factory()
        output.start()
        self._output = output
        if self._latency_guard_s is None:
            self._scheduler = PlaybackScheduler(output)
        else:
            self._scheduler = PlaybackScheduler(output, latency_guard_s=self._latency_guard_s)

    def _open_capture(self) -> None:
        if self._capture_factory is None:
            raise DeviceError("no capture device configured")
        capture = self._capture_factory()
        self._chunker = CaptureChunker(self.send_audio_frame, in_rate=capture.sample_rate)
        try:
            capture.start(self._on_capture_block)
        except DeviceError:
            capture.close()
            self._chunker = None
            raise
        self._capture = capture

    async def _teardown(self) -> None:
        """Release transport, loops and devices. Safe to call repeatedly."""
        current = asyncio.current_task()
        pending, self._connect_task = self._connect_task, None
        if pending is not None and pending is not current and not pending.done():
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)

        tasks = [t for t in (self._send_task, self._recv_task) if t is not None and t is not current]
        self._send_task = None
        self._recv_task = None

        transport = self._transport
        self._transport = None
        self._outbound = None

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if transport is not None:
            await _close_quietly(transport, self._session.session_id)

        capture, self._capture = self._capture, None
        self._chunker = None
        if capture is not None:
            capture.close()

        output, self._output = self._output, None
        self._scheduler = None
        if output is not None:
            output.close()

        self._assistant_parts.clear()

    def _fail(self, message: str, error: Exception) -> None:
        session = self._session
        session.last_error = message
        session.failure = error
        log_event({
            "event_type": "SESSION_FAILED",
            "session_id": session.session_id,
            "error": message,
        })
        self._set_phase(SessionPhase.ERROR)
        self._notify(SessionFailed(session_id=session.session_id, message=message, error=error))

    def _set_phase(self, phase: SessionPhase) -> None:
        session = self._session
        previous = session.phase
        if previous is phase:
            return
        session.phase = phase
        log_event({
            "event_type": "SESSION_PHASE_CHANGED",
            "session_id": session.session_id,
            "from": previous.value,
            "to": phase.value,
            "endpoint": session.active_endpoint,
        })
        self._notify(PhaseChanged(session_id=session.session_id, previous=previous, current=phase))

    def _notify(self, notice: Notice) -> None:
        if self._on_notice is None:
            return
        try:
            self._on_notice(notice)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "NOTICE_CALLBACK_FAILED",
                "notice": type(notice).__name__,
                "error": repr(e),
            })

    def _log_noop(self, operation: str) -> None:
        log_event({
            "event_type": "SESSION_OPERATION_IGNORED",
            "session_id": self._session.session_id,
            "operation": operation,
            "phase": self._session.phase.value,
        })


async def _close_quietly(transport: Transport, session_id: str) -> None:
    try:
        await transport.close()
    except Exception as e:  # pylint: disable=broad-exception-caught
        log_event({
            "event_type": "TRANSPORT_CLOSE_FAILED",
            "session_id": session_id,
            "error": repr(e),
        })
