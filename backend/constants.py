"""
PROTOCOL CONSTANTS
------------------
Single source of truth for the behavioral constants of the voice bridge.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Outbound audio (PCM16 mono @ 16kHz, 100ms frames)
# =============================================================================

CAPTURE_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
CAPTURE_FRAME_MS: Final[int] = 100

CAPTURE_SAMPLES_PER_FRAME: Final[int] = (CAPTURE_SAMPLE_RATE_HZ * CAPTURE_FRAME_MS) // 1000
CAPTURE_FRAME_BYTES: Final[int] = CAPTURE_SAMPLES_PER_FRAME * AUDIO_SAMPLE_WIDTH_BYTES  # 6400

# Asymmetric full-scale mapping for float -> int16
PCM16_POSITIVE_SCALE: Final[float] = 32767.0
PCM16_NEGATIVE_SCALE: Final[float] = 32768.0

# =============================================================================
# Inbound audio (PCM16 mono @ 24kHz, variable length)
# =============================================================================

PLAYBACK_SOURCE_RATE_HZ: Final[int] = 24_000
PLAYBACK_LATENCY_GUARD_S: Final[float] = 0.02

# =============================================================================
# Token minting
# =============================================================================

TOKEN_LIFETIME_MIN_S: Final[int] = 60
TOKEN_LIFETIME_MAX_S: Final[int] = 3600
TOKEN_LIFETIME_DEFAULT_S: Final[int] = 600

CREDENTIAL_DELIMITER: Final[str] = "."
CREDENTIAL_MASK_MARKERS: Final[tuple[str, ...]] = ("...", "…")
AUTH_SCHEME_PREFIX: Final[str] = "Bearer "

# Heuristic floor used by the operator credential check only
CREDENTIAL_MIN_ID_LEN: Final[int] = 6
CREDENTIAL_MIN_SECRET_LEN: Final[int] = 16

JWT_HEADER: Final[dict[str, str]] = {"alg": "HS256", "sign_type": "SIGN"}

REALTIME_BASE_URL_DEFAULT: Final[str] = "wss://open.bigmodel.cn/api/paas/v4/realtime"

# =============================================================================
# Connection negotiation
# =============================================================================

CONNECT_ATTEMPT_TIMEOUT_S: Final[float] = 6.5
WS_MAX_MESSAGE_BYTES: Final[int] = 2**22
OUTBOUND_QUEUE_MAX: Final[int] = 1024

# =============================================================================
# Event protocol: outbound types
# =============================================================================

EVT_SESSION_UPDATE: Final[str] = "session.update"
EVT_INPUT_AUDIO_APPEND: Final[str] = "input_audio_buffer.append"
EVT_INPUT_AUDIO_CLEAR: Final[str] = "input_audio_buffer.clear"
EVT_INPUT_AUDIO_COMMIT: Final[str] = "input_audio_buffer.commit"
EVT_RESPONSE_CREATE: Final[str] = "response.create"

# =============================================================================
# Event protocol: inbound types
# =============================================================================

EVT_ERROR: Final[str] = "error"
EVT_TRANSCRIPT_DELTA: Final[str] = "response.audio_transcript.delta"
EVT_TRANSCRIPT_DONE: Final[str] = "response.audio_transcript.done"
EVT_INPUT_TRANSCRIPTION_COMPLETED: Final[str] = (
    "conversation.item.input_audio_transcription.completed"
)
EVT_AUDIO_DELTA: Final[str] = "response.audio.delta"

# =============================================================================
# Token endpoint
# =============================================================================

TOKEN_ROUTE_PATH: Final[str] = "/api/zhipu-token"
NO_STORE_CACHE_CONTROL: Final[str] = "no-store, max-age=0"
