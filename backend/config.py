"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide typed, immutable config objects

Non-responsibilities:
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from constants import (
    CONNECT_ATTEMPT_TIMEOUT_S,
    REALTIME_BASE_URL_DEFAULT,
    TOKEN_LIFETIME_DEFAULT_S,
    TOKEN_ROUTE_PATH,
)
from errors import ConfigError
from protocol.prompts import GREETING_V1, INSTRUCTIONS_V1


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class SessionProfile:
    """
    Content of the session.update event sent right after connecting.

    The instruction and greeting text are product copy; they are carried
    verbatim and never interpreted.
    """

    model: str = "glm-realtime"
    modalities: tuple[str, ...] = ("audio", "text")
    instructions: str = INSTRUCTIONS_V1
    voice: str = "tongtong"
    input_audio_format: str = "pcm16"
    output_audio_format: str = "pcm"
    noise_reduction: str = "far_field"
    temperature: float = 0.6
    max_response_output_tokens: str = "inf"
    chat_mode: str = "audio"
    tts_source: str = "e2e"
    greeting_enabled: bool = True
    greeting: str = GREETING_V1

    def to_session_payload(self) -> dict[str, Any]:
        """Render the `session` object of a session.update event."""
        return {
            "model": self.model,
            "modalities": list(self.modalities),
            "instructions": self.instructions,
            "voice": self.voice,
            "input_audio_format": self.input_audio_format,
            "output_audio_format": self.output_audio_format,
            "input_audio_noise_reduction": {"type": self.noise_reduction},
            "temperature": self.temperature,
            "max_response_output_tokens": self.max_response_output_tokens,
            "beta_fields": {
                "chat_mode": self.chat_mode,
                "tts_source": self.tts_source,
                "greeting_config": {
                    "enable": self.greeting_enabled,
                    "content": self.greeting,
                },
            },
        }


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup and passed downward to the token
    endpoint, the console client and the operator tools.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str
    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Token minting (server side)
    # ------------------------------------------------------------------

    api_key: str
    token_default_lifetime_s: int
    realtime_base_url: str

    # ------------------------------------------------------------------
    # Client
    # ------------------------------------------------------------------

    token_endpoint_url: str
    header_auth_candidates: bool
    connect_timeout_s: float
    audio_profile: str | None
    session_profile: SessionProfile

    # ------------------------------------------------------------------
    # HTTP server
    # ------------------------------------------------------------------

    host: str
    port: int

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        A missing ZHIPU_API_KEY is not an error here: the token endpoint
        reports it per request with a diagnostic, and the console client
        may fetch tokens from a remote endpoint instead.
        """
        port = _env_int("PORT", 5173)
        default_profile = SessionProfile()
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            api_key=os.environ.get("ZHIPU_API_KEY", ""),
            token_default_lifetime_s=_env_int("TOKEN_DEFAULT_LIFETIME_S", TOKEN_LIFETIME_DEFAULT_S),
            realtime_base_url=os.environ.get("REALTIME_BASE_URL", REALTIME_BASE_URL_DEFAULT),

            token_endpoint_url=os.environ.get(
                "TOKEN_ENDPOINT_URL", f"http://localhost:{port}{TOKEN_ROUTE_PATH}"
            ),
            header_auth_candidates=_env_flag("REALTIME_HEADER_AUTH", "1"),
            connect_timeout_s=_env_float("CONNECT_TIMEOUT_S", CONNECT_ATTEMPT_TIMEOUT_S),
            audio_profile=os.environ.get("AUDIO_PROFILE") or None,
            session_profile=SessionProfile(
                model=os.environ.get("REALTIME_MODEL", default_profile.model),
                voice=os.environ.get("REALTIME_VOICE", default_profile.voice),
                instructions=os.environ.get("REALTIME_INSTRUCTIONS", default_profile.instructions),
                greeting=os.environ.get("REALTIME_GREETING", default_profile.greeting),
            ),

            host=os.environ.get("HOST", "0.0.0.0"),
            port=port,
        )
