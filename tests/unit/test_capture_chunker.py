# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.capture_chunker import CaptureChunker


def _collector() -> tuple[list[bytes], CaptureChunker]:
    frames: list[bytes] = []
    return frames, CaptureChunker(frames.append, in_rate=16_000)


def test_250ms_at_48k_yields_one_full_frame_then_remainder_on_flush() -> None:
    frames: list[bytes] = []
    chunker = CaptureChunker(frames.append, in_rate=48_000)

    block = np.full(12_000, 0.1, dtype=np.float32)
    assert chunker.push(block) == 1
    assert [len(f) for f in frames] == [6400]
    assert chunker.pending_bytes == 1600

    assert chunker.flush() == 1
    assert [len(f) for f in frames] == [6400, 1600]
    assert chunker.pending_bytes == 0
    assert chunker.bytes_emitted == 8000


def test_bytes_out_equal_bytes_in_across_many_blocks() -> None:
    frames: list[bytes] = []
    chunker = CaptureChunker(frames.append, in_rate=48_000)

    for _ in range(20):
        chunker.push(np.zeros(1200, dtype=np.float32))  # 400 samples @ 16 kHz
    chunker.flush()

    assert sum(len(f) for f in frames) == 20 * 400 * 2
    assert all(len(f) == 6400 for f in frames[:-1])
    assert 0 < len(frames[-1]) <= 6400


def test_frames_preserve_byte_order_across_push_boundaries() -> None:
    frames, chunker = _collector()
    data = bytes(i % 251 for i in range(20_000))

    for start in range(0, len(data), 999):
        chunker.push_bytes(data[start:start + 999])
    chunker.flush()

    assert b"".join(frames) == data
    assert [len(f) for f in frames] == [6400, 6400, 6400, 800]


def test_flush_on_exact_multiple_emits_no_empty_frame() -> None:
    frames, chunker = _collector()

    chunker.push_bytes(b"\x00" * 12_800)
    assert chunker.flush() == 0
    assert [len(f) for f in frames] == [6400, 6400]


def test_reset_drops_pending_audio() -> None:
    frames, chunker = _collector()

    chunker.push_bytes(b"\x01" * 3000)
    chunker.reset()
    chunker.flush()

    assert not frames
    assert chunker.pending_bytes == 0


def test_empty_and_none_blocks_are_noops() -> None:
    frames, chunker = _collector()

    assert chunker.push(None) == 0
    assert chunker.push(np.zeros(0, dtype=np.float32)) == 0
    assert chunker.push_bytes(b"") == 0
    assert chunker.flush() == 0
    assert not frames


def test_multichannel_block_uses_first_channel() -> None:
    frames, chunker = _collector()
    block = np.zeros((3200, 2), dtype=np.float32)
    block[:, 0] = 0.5
    block[:, 1] = -0.5

    chunker.push(block)

    samples = np.frombuffer(frames[0], dtype="<i2")
    assert samples.shape == (3200,)
    assert np.all(samples == 16384)


def test_invalid_configuration_raises() -> None:
    with pytest.raises(ValueError):
        CaptureChunker(lambda _: None, in_rate=16_000, frame_bytes=0)
    with pytest.raises(ValueError):
        CaptureChunker(lambda _: None, in_rate=0)
