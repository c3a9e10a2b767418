"""
Audio device profiles.

A profile is an explicit configuration struct handed to the capture and
playback devices at construction. Which profile applies is decided by a
separate, swappable policy so the audio core never inspects the
environment itself.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Protocol

from constants import PLAYBACK_LATENCY_GUARD_S


@dataclass(frozen=True)
class AudioProfile:
    """
    name:
        Profile identifier, for logs.
    capture_block_size:
        Frames per capture callback. Larger blocks cost latency but survive
        slow machines.
    playback_block_size:
        Frames per output callback (0 lets PortAudio choose).
    latency_guard_s:
        Minimum lead time between "now" and the start of a scheduled chunk.
    """
    name: str
    capture_block_size: int
    playback_block_size: int = 0
    latency_guard_s: float = PLAYBACK_LATENCY_GUARD_S


STANDARD = AudioProfile(name="standard", capture_block_size=2048)
LITE = AudioProfile(name="lite", capture_block_size=4096, playback_block_size=2048)

PROFILES: dict[str, AudioProfile] = {p.name: p for p in (STANDARD, LITE)}


class DeviceProfilePolicy(Protocol):
    def select(self) -> AudioProfile: ...


@dataclass(frozen=True)
class FixedProfilePolicy:
    """Always returns the same profile (tests, explicit configuration)."""
    profile: AudioProfile = STANDARD

    def select(self) -> AudioProfile:
        return self.profile


class EnvDeviceProfilePolicy:
    """
    Picks LITE on constrained hosts.

    Order:
    1. AUDIO_PROFILE names a known profile -> that profile
    2. two or fewer CPUs -> LITE
    3. otherwise STANDARD
    """

    def __init__(
        self,
        *,
        environ: Mapping[str, str] | None = None,
        cpu_count: int | None = None,
    ) -> None:
        self._environ = environ if environ is not None else os.environ
        self._cpu_count = cpu_count if cpu_count is not None else (os.cpu_count() or 1)

    def select(self) -> AudioProfile:
        forced = (self._environ.get("AUDIO_PROFILE") or "").strip().lower()
        if forced in PROFILES:
            return PROFILES[forced]
        if self._cpu_count <= 2:
            return LITE
        return STANDARD
