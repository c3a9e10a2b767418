"""PCM conversion utilities."""
from __future__ import annotations

import base64
import binascii

import numpy as np

from constants import PCM16_NEGATIVE_SCALE, PCM16_POSITIVE_SCALE


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0].

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; drop the dangling byte
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / np.float32(PCM16_NEGATIVE_SCALE)
    return np.clip(audio_f32, -1.0, 1.0)


def float_to_pcm16le(samples: np.ndarray) -> bytes:
    """
    Quantize float samples to PCM16 little-endian bytes.

    Asymmetric full-scale mapping: negatives scale by 32768, positives by
    32767, both rounded half-up after clamping to [-1, 1].
    """
    if samples.size == 0:
        return b""

    s = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(s < 0.0, s * PCM16_NEGATIVE_SCALE, s * PCM16_POSITIVE_SCALE)
    quantized = np.floor(scaled + 0.5).astype("<i2")
    return quantized.tobytes()


def b64encode_pcm(pcm_bytes: bytes) -> str:
    return base64.b64encode(pcm_bytes).decode("ascii")


def b64decode_pcm(b64: str) -> bytes:
    """
    Decode base64 audio from an inbound event.

    Returns b"" for empty or malformed input; the audio path never raises.
    """
    if not b64:
        return b""
    try:
        return base64.b64decode(b64, validate=False)
    except (binascii.Error, ValueError):
        return b""
