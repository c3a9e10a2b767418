# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.pcm import b64encode_pcm, float_to_pcm16le
from audio.playback import PlaybackScheduler, TimelineMixer


class FakeOutput:
    def __init__(self, sample_rate: int = 48_000) -> None:
        self._sample_rate = sample_rate
        self.now = 0.0
        self.scheduled: list[tuple[float, np.ndarray]] = []

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def current_time(self) -> float:
        return self.now

    def schedule(self, start_s: float, samples: np.ndarray) -> None:
        self.scheduled.append((start_s, samples))


def _chunk_b64(num_samples: int, value: float = 0.1) -> str:
    return b64encode_pcm(float_to_pcm16le(np.full(num_samples, value, dtype=np.float32)))


def test_chunks_play_back_to_back_without_overlap() -> None:
    output = FakeOutput()
    scheduler = PlaybackScheduler(output)

    chunks = [scheduler.enqueue(_chunk_b64(n)) for n in (2400, 480, 4800, 24)]
    assert all(c is not None for c in chunks)

    first = chunks[0]
    assert first is not None
    assert first.start_s == pytest.approx(0.02)
    assert first.duration_s == pytest.approx(0.1)

    for prev, nxt in zip(chunks, chunks[1:]):
        assert prev is not None and nxt is not None
        assert nxt.start_s == pytest.approx(prev.end_s)
        assert nxt.start_s >= prev.end_s - 1e-12


def test_no_chunk_starts_in_the_past() -> None:
    output = FakeOutput()
    scheduler = PlaybackScheduler(output)

    scheduler.enqueue(_chunk_b64(2400))
    output.now = 5.0
    late = scheduler.enqueue(_chunk_b64(2400))

    assert late is not None
    assert late.start_s == pytest.approx(5.02)
    assert scheduler.next_start == pytest.approx(5.12)


def test_chunk_is_resampled_to_output_rate() -> None:
    output = FakeOutput(sample_rate=48_000)
    scheduler = PlaybackScheduler(output)

    chunk = scheduler.enqueue(_chunk_b64(2400))

    assert chunk is not None
    assert chunk.num_samples == 4800
    assert output.scheduled[0][1].shape == (4800,)


@pytest.mark.parametrize("payload", ["", "a", b64encode_pcm(b"\x01")])
def test_empty_or_invalid_audio_leaves_cursor_alone(payload: str) -> None:
    output = FakeOutput()
    scheduler = PlaybackScheduler(output)
    before = scheduler.next_start

    assert scheduler.enqueue(payload) is None
    assert scheduler.next_start == before
    assert not output.scheduled


def test_reset_never_moves_cursor_backwards() -> None:
    output = FakeOutput()
    scheduler = PlaybackScheduler(output)
    scheduler.enqueue(_chunk_b64(24_000))  # 1 s

    scheduler.reset()
    assert scheduler.next_start == pytest.approx(1.02)

    output.now = 3.0
    scheduler.reset()
    assert scheduler.next_start == pytest.approx(3.0)


# -------------------------
# TimelineMixer
# -------------------------

def test_mixer_renders_scheduled_samples_and_advances_clock() -> None:
    mixer = TimelineMixer(1_000)
    mixer.schedule(0.002, np.full(3, 0.5, dtype=np.float32))

    out = mixer.render(4)
    np.testing.assert_allclose(out, [0.0, 0.0, 0.5, 0.5])
    assert mixer.current_time() == pytest.approx(0.004)
    assert mixer.pending_chunks() == 1

    out = mixer.render(4)
    np.testing.assert_allclose(out, [0.5, 0.0, 0.0, 0.0])
    assert mixer.pending_chunks() == 0


def test_mixer_starts_late_chunks_at_next_rendered_frame() -> None:
    mixer = TimelineMixer(1_000)
    mixer.render(10)

    mixer.schedule(0.0, np.ones(2, dtype=np.float32) * 0.25)

    np.testing.assert_allclose(mixer.render(3), [0.25, 0.25, 0.0])


def test_mixer_sums_and_clips_overlap() -> None:
    mixer = TimelineMixer(1_000)
    mixer.schedule(0.0, np.full(2, 0.75, dtype=np.float32))
    mixer.schedule(0.0, np.full(2, 0.75, dtype=np.float32))

    np.testing.assert_allclose(mixer.render(2), [1.0, 1.0])


def test_mixer_clear_keeps_clock() -> None:
    mixer = TimelineMixer(1_000)
    mixer.schedule(0.0, np.ones(100, dtype=np.float32))
    mixer.render(10)

    mixer.clear()

    assert mixer.pending_chunks() == 0
    assert mixer.current_time() == pytest.approx(0.01)
    assert not np.any(mixer.render(5))


def test_scheduler_over_mixer_plays_in_order() -> None:
    mixer = TimelineMixer(24_000)
    scheduler = PlaybackScheduler(mixer)

    scheduler.enqueue(_chunk_b64(240, 0.1))
    scheduler.enqueue(_chunk_b64(240, -0.1))

    out = mixer.render(1_000)
    guard = 480  # 20 ms at 24 kHz
    assert not np.any(out[:guard])
    assert np.all(out[guard:guard + 240] > 0)
    assert np.all(out[guard + 240:guard + 480] < 0)
    assert not np.any(out[guard + 480:])


@pytest.mark.parametrize("offset", [-0.4, 0.4])
def test_mixer_snaps_drifted_start_onto_previous_chunk_end(offset: float) -> None:
    sample_rate = 24_000
    mixer = TimelineMixer(sample_rate)
    mixer.schedule(0.0, np.full(100, 0.25, dtype=np.float32))

    # Start lands one frame early or one frame late
    mixer.schedule((100 + offset * 2.5) / sample_rate, np.full(100, 0.5, dtype=np.float32))

    out = mixer.render(210)
    np.testing.assert_allclose(out[:100], 0.25)
    np.testing.assert_allclose(out[100:200], 0.5)
    assert not np.any(out[200:])


def test_mixer_keeps_deliberate_gap_of_two_frames() -> None:
    mixer = TimelineMixer(1_000)
    mixer.schedule(0.0, np.full(3, 0.5, dtype=np.float32))
    mixer.schedule(0.005, np.full(2, 0.5, dtype=np.float32))

    np.testing.assert_allclose(mixer.render(7), [0.5, 0.5, 0.5, 0.0, 0.0, 0.5, 0.5])


def test_scheduler_over_mixer_is_gap_free_across_odd_chunk_sizes() -> None:
    mixer = TimelineMixer(44_100)
    scheduler = PlaybackScheduler(mixer, latency_guard_s=0.0)

    total = 0
    for n in (241, 367, 1013, 77, 5, 999, 431):
        chunk = scheduler.enqueue_samples(np.full(n, 0.1, dtype=np.float32))
        assert chunk is not None
        total += chunk.num_samples

    out = mixer.render(total + 50)
    np.testing.assert_allclose(out[:total], 0.1, rtol=1e-6)
    assert not np.any(out[total:])
