"""
Push-to-talk console client.

    Enter   start talking / stop talking and get a reply
    r       reconnect
    q       quit

Uses a locally configured ZHIPU_API_KEY when present, otherwise fetches
tokens from TOKEN_ENDPOINT_URL.
"""

from __future__ import annotations

import asyncio
import sys

from dotenv import load_dotenv

from audio.devices import SoundDeviceCapture, SoundDeviceOutput
from audio.profile import PROFILES, AudioProfile, EnvDeviceProfilePolicy, FixedProfilePolicy
from auth.candidates import HEADER_EMBEDDINGS, QUERY_EMBEDDINGS
from config import AppConfig
from errors import VoiceBridgeError
from observability import logger
from observability.logger import log_event
from session.negotiator import ConnectionNegotiator
from session.protocol_session import ProtocolSession
from session.session_state import (
    AssistantTranscript,
    Notice,
    PhaseChanged,
    SessionClosed,
    SessionFailed,
    SessionPhase,
    UserTranscript,
)
from session.token_source import HttpTokenSource, LocalTokenSource, TokenSource


def build_token_source(config: AppConfig) -> TokenSource:
    extra = HEADER_EMBEDDINGS if config.header_auth_candidates else ()
    if config.api_key.strip():
        return LocalTokenSource(
            config.api_key,
            lifetime_s=config.token_default_lifetime_s,
            base_url=config.realtime_base_url,
            embeddings=QUERY_EMBEDDINGS + tuple(extra),
        )
    return HttpTokenSource(
        config.token_endpoint_url,
        lifetime_s=config.token_default_lifetime_s,
        base_url=config.realtime_base_url,
        extra_embeddings=extra,
    )


def select_profile(config: AppConfig) -> AudioProfile:
    if config.audio_profile and config.audio_profile.lower() in PROFILES:
        return FixedProfilePolicy(PROFILES[config.audio_profile.lower()]).select()
    return EnvDeviceProfilePolicy().select()


def print_notice(notice: Notice) -> None:
    if isinstance(notice, PhaseChanged):
        print(f"[{notice.current.value}]")
    elif isinstance(notice, AssistantTranscript):
        print(f"assistant: {notice.text}")
    elif isinstance(notice, UserTranscript):
        print(f"you: {notice.text}")
    elif isinstance(notice, SessionFailed):
        kind = type(notice.error).__name__ if notice.error is not None else "error"
        print(f"{kind}: {notice.message}")
    elif isinstance(notice, SessionClosed):
        print(f"closed: {notice.reason or ''}")
    sys.stdout.flush()


async def _connect(session: ProtocolSession) -> None:
    try:
        await session.connect()
    except VoiceBridgeError as exc:
        # Already surfaced through SessionFailed
        log_event({
            "event_type": "CONSOLE_CONNECT_FAILED",
            "error_type": type(exc).__name__,
            "error": str(exc),
        })


async def run(config: AppConfig) -> None:
    profile = select_profile(config)
    session = ProtocolSession(
        token_source=build_token_source(config),
        session_profile=config.session_profile,
        negotiator=ConnectionNegotiator(timeout_s=config.connect_timeout_s),
        capture_factory=lambda: SoundDeviceCapture(profile),
        output_factory=lambda: SoundDeviceOutput(profile),
        on_notice=print_notice,
        latency_guard_s=profile.latency_guard_s,
    )

    loop = asyncio.get_running_loop()
    print("Enter: talk / send   r: reconnect   q: quit")
    await _connect(session)

    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            command = line.strip().lower()

            if command == "q":
                break
            if command == "r":
                await _connect(session)
                continue

            if session.phase is SessionPhase.CAPTURING:
                session.stop_capture_and_respond()
            elif session.phase is SessionPhase.READY:
                try:
                    session.start_capture()
                except VoiceBridgeError as exc:
                    print(f"error: {exc}")
            else:
                await _connect(session)
    finally:
        await session.shutdown()


def main() -> None:
    load_dotenv()
    config = AppConfig.load_from_env()
    logger.configure(enabled=config.enable_json_logs)
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
