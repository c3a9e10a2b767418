"""
Gap-free playback scheduling for inbound model audio.

Two pieces:

PlaybackScheduler (event-loop side):
    Decodes base64 PCM16 @ 24 kHz, resamples to the output rate and places
    each chunk on a virtual timeline at max(now + guard, cursor). The cursor
    then advances by the chunk duration, so chunks play back-to-back in
    enqueue order, never overlap, and never start in the past.

TimelineMixer (audio-callback side):
    The virtual clock itself. Holds scheduled chunks and renders them into
    output blocks. The clock advances only as blocks are rendered.

Threading:
- PlaybackScheduler is mutated only on the event loop.
- TimelineMixer.schedule() (event loop) and render() (PortAudio thread)
  share the chunk list under a threading.Lock.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from audio.pcm import b64decode_pcm, pcm16le_to_float32
from audio.resampler import resample_linear
from constants import PLAYBACK_LATENCY_GUARD_S, PLAYBACK_SOURCE_RATE_HZ


class PlaybackOutput(Protocol):
    """Anything that owns an audio clock and can play samples at a time."""

    @property
    def sample_rate(self) -> int: ...

    def current_time(self) -> float: ...

    def schedule(self, start_s: float, samples: np.ndarray) -> None: ...


@dataclass(frozen=True)
class ScheduledChunk:
    """One chunk placed on the timeline."""
    start_s: float
    duration_s: float
    num_samples: int

    @property
    def end_s(self) -> float:
        return self.start_s + self.duration_s


# ---------------------------------------------------------------------
# PlaybackScheduler
# ---------------------------------------------------------------------

class PlaybackScheduler:
    """
    Monotonic playback cursor over a PlaybackOutput.

    The cursor starts at the output's current time and never decreases.
    """

    def __init__(
        self,
        output: PlaybackOutput,
        *,
        in_rate: int = PLAYBACK_SOURCE_RATE_HZ,
        latency_guard_s: float = PLAYBACK_LATENCY_GUARD_S,
    ) -> None:
        self._output = output
        self._in_rate = in_rate
        self._guard_s = latency_guard_s
        self._next_start: float = output.current_time()
        self.chunks_scheduled: int = 0

    @property
    def next_start(self) -> float:
        return self._next_start

    def enqueue(self, b64_pcm: str) -> ScheduledChunk | None:
        """
        Decode and schedule one base64 PCM16 mono chunk.

        Returns None (and leaves the cursor alone) for empty or undecodable
        input.
        """
        pcm = b64decode_pcm(b64_pcm)
        if len(pcm) < 2:
            return None
        return self.enqueue_samples(pcm16le_to_float32(pcm))

    def enqueue_samples(self, samples: np.ndarray) -> ScheduledChunk | None:
        """Schedule already-decoded float samples at the source rate."""
        if samples.size == 0:
            return None

        rate = self._output.sample_rate
        out = resample_linear(samples, self._in_rate, rate)
        duration_s = out.shape[0] / float(rate)

        now = self._output.current_time()
        start = max(now + self._guard_s, self._next_start)
        self._output.schedule(start, out)
        self._next_start = start + duration_s
        self.chunks_scheduled += 1

        return ScheduledChunk(start_s=start, duration_s=duration_s, num_samples=out.shape[0])

    def reset(self) -> None:
        """
        Catch the cursor up to now. Never moves it backwards.
        """
        self._next_start = max(self._next_start, self._output.current_time())


# ---------------------------------------------------------------------
# TimelineMixer
# ---------------------------------------------------------------------

@dataclass
class _Pending:
    start_frame: int
    samples: np.ndarray


class TimelineMixer:
    """
    Virtual audio clock plus mixer for scheduled chunks.

    current_time() is frames_rendered / sample_rate. Chunks scheduled for a
    time that has already been rendered start at the next rendered frame.
    A chunk whose start lands within one frame of the previous chunk's end
    is snapped onto it.
    """

    def __init__(self, sample_rate: int) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        self._sample_rate = sample_rate
        self._frames_rendered: int = 0
        # (start, end) frames of the latest-ending scheduled chunk
        self._tail: tuple[int, int] | None = None
        self._pending: list[_Pending] = []
        self._lock = threading.Lock()

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / float(self._sample_rate)

    def schedule(self, start_s: float, samples: np.ndarray) -> None:
        data = np.asarray(samples, dtype=np.float32).reshape(-1)
        if data.size == 0:
            return
        start_frame = int(round(start_s * self._sample_rate))
        with self._lock:
            tail = self._tail
            if tail is not None and start_frame > tail[0] and abs(start_frame - tail[1]) <= 1:
                start_frame = tail[1]
            start_frame = max(start_frame, self._frames_rendered)
            self._pending.append(_Pending(start_frame=start_frame, samples=data))
            end_frame = start_frame + data.shape[0]
            if tail is None or end_frame >= tail[1]:
                self._tail = (start_frame, end_frame)

    def pending_chunks(self) -> int:
        with self._lock:
            return len(self._pending)

    def clear(self) -> None:
        """Drop everything not yet rendered. The clock keeps running."""
        with self._lock:
            self._pending.clear()
            self._tail = None

    def render(self, num_frames: int) -> np.ndarray:
        """
        Produce the next num_frames output samples and advance the clock.

        Called from the audio callback; never blocks beyond the lock and
        never raises for an empty timeline (silence).
        """
        out = np.zeros(num_frames, dtype=np.float32)
        if num_frames <= 0:
            return out

        with self._lock:
            t0 = self._frames_rendered
            t1 = t0 + num_frames
            keep: list[_Pending] = []

            for chunk in self._pending:
                c0 = chunk.start_frame
                c1 = c0 + chunk.samples.shape[0]
                if c0 < t1 and c1 > t0:
                    lo = max(c0, t0)
                    hi = min(c1, t1)
                    out[lo - t0: hi - t0] += chunk.samples[lo - c0: hi - c0]
                if c1 > t1:
                    keep.append(chunk)

            self._pending = keep
            self._frames_rendered = t1

        np.clip(out, -1.0, 1.0, out=out)
        return out
