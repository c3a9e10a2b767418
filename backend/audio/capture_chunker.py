"""
Capture chunker: live float audio -> fixed-size PCM16 frames.

Pipeline per pushed block:
    native-rate float32 -> resample_linear -> float_to_pcm16le -> byte queue

Invariants:
- PCM16 signed, little-endian, mono, 16 kHz
- Every frame emitted by push() is exactly frame_bytes long (6400 = 100 ms)
- flush() emits whatever remains as one final, possibly undersized frame
- Bytes out == bytes in; nothing is padded, dropped or duplicated
- Frames are emitted in arrival order

Threading:
- Single producer / single consumer. The owner must call push(), flush()
  and reset() from one thread (the session's event loop).
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Deque

import numpy as np

from audio.pcm import float_to_pcm16le
from audio.resampler import resample_linear
from constants import CAPTURE_FRAME_BYTES, CAPTURE_SAMPLE_RATE_HZ


FrameSink = Callable[[bytes], None]


class CaptureChunker:
    """
    Accumulates quantized capture audio and slices it into frames.

    frame_sink receives each frame (bytes) synchronously as soon as it is
    complete. Ownership of the bytes passes to the sink.
    """

    def __init__(
        self,
        frame_sink: FrameSink,
        *,
        in_rate: int,
        out_rate: int = CAPTURE_SAMPLE_RATE_HZ,
        frame_bytes: int = CAPTURE_FRAME_BYTES,
    ) -> None:
        if frame_bytes <= 0:
            raise ValueError("frame_bytes must be > 0")
        if in_rate <= 0 or out_rate <= 0:
            raise ValueError("sample rates must be > 0")

        self._sink = frame_sink
        self._in_rate = in_rate
        self._out_rate = out_rate
        self._frame_bytes = frame_bytes

        self._pending: Deque[memoryview] = deque()
        self._pending_len: int = 0
        self.frames_emitted: int = 0
        self.bytes_emitted: int = 0

    # -------------------------
    # Introspection
    # -------------------------

    @property
    def pending_bytes(self) -> int:
        return self._pending_len

    @property
    def frame_bytes(self) -> int:
        return self._frame_bytes

    # -------------------------
    # Producer side
    # -------------------------

    def push(self, block: np.ndarray | None) -> int:
        """
        Add one capture block of native-rate float samples.

        2-D blocks (frames, channels) use the first channel.

        Returns:
            Number of full frames emitted by this call.
        """
        if block is None:
            return 0

        samples = np.asarray(block, dtype=np.float32)
        if samples.ndim > 1:
            samples = samples[:, 0]
        if samples.size == 0:
            return 0

        down = resample_linear(samples, self._in_rate, self._out_rate)
        return self.push_bytes(float_to_pcm16le(down))

    def push_bytes(self, pcm_bytes: bytes) -> int:
        """
        Queue already-quantized PCM16 bytes.

        Returns:
            Number of full frames emitted by this call.
        """
        if not pcm_bytes:
            return 0

        self._pending.append(memoryview(pcm_bytes))
        self._pending_len += len(pcm_bytes)

        emitted = 0
        while self._pending_len >= self._frame_bytes:
            self._emit(self._frame_bytes)
            emitted += 1
        return emitted

    # -------------------------
    # Control side
    # -------------------------

    def flush(self) -> int:
        """
        Emit all queued audio: full frames first, then one undersized
        remainder frame if any bytes are left. Clears the queue.

        Returns:
            Number of frames emitted.
        """
        emitted = 0
        while self._pending_len >= self._frame_bytes:
            self._emit(self._frame_bytes)
            emitted += 1

        if self._pending_len > 0:
            self._emit(self._pending_len)
            emitted += 1

        self.reset()
        return emitted

    def reset(self) -> None:
        """Drop queued audio without emitting it."""
        self._pending.clear()
        self._pending_len = 0

    # -------------------------
    # Internals
    # -------------------------

    def _emit(self, size: int) -> None:
        out = bytearray(size)
        offset = 0

        while offset < size and self._pending:
            head = self._pending[0]
            need = size - offset
            if len(head) <= need:
                out[offset: offset + len(head)] = head
                offset += len(head)
                self._pending.popleft()
            else:
                out[offset: offset + need] = head[:need]
                self._pending[0] = head[need:]
                offset += need

        self._pending_len -= offset
        self.frames_emitted += 1
        self.bytes_emitted += offset
        self._sink(bytes(out))
