"""
Capture and playback devices (sounddevice / PortAudio).

Both devices run at the hardware's native sample rate; conversion to and
from the protocol rates happens in CaptureChunker and PlaybackScheduler.

Callback rules:
- Capture callback copies the block and hands it to `on_block`; nothing
  else. It must never block.
- Playback callback only asks the TimelineMixer for the next block.
"""

from __future__ import annotations

from typing import Any, Callable

import numpy as np
import sounddevice as sd

from audio.playback import TimelineMixer
from audio.profile import AudioProfile
from errors import DeviceError
from observability.logger import log_event


BlockHandler = Callable[[np.ndarray], None]

_DEVICE_ERRORS = (sd.PortAudioError, OSError, ValueError)


def native_sample_rate(device: int | str | None, kind: str) -> int:
    """Default sample rate of the selected (or default) device."""
    try:
        info: Any = sd.query_devices(device, kind=kind)
    except _DEVICE_ERRORS as e:
        raise DeviceError(f"No {kind} device available: {e}") from e
    return int(info["default_samplerate"])


class SoundDeviceCapture:
    """Mono float32 microphone stream."""

    def __init__(self, profile: AudioProfile, *, device: int | str | None = None) -> None:
        self._profile = profile
        self._device = device
        self._stream: sd.InputStream | None = None
        self._handler: BlockHandler | None = None
        self.sample_rate: int = native_sample_rate(device, "input")

    def start(self, on_block: BlockHandler) -> None:
        """Open and start the stream. Idempotent while running."""
        self._handler = on_block
        if self._stream is not None:
            return

        def callback(indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
            handler = self._handler
            if handler is not None:
                handler(indata[:, 0].copy())

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._profile.capture_block_size,
                device=self._device,
                callback=callback,
            )
            stream.start()
        except _DEVICE_ERRORS as e:
            raise DeviceError(f"Microphone unavailable: {e}") from e

        self._stream = stream
        log_event({
            "event_type": "CAPTURE_DEVICE_OPENED",
            "sample_rate": self.sample_rate,
            "block_size": self._profile.capture_block_size,
            "profile": self._profile.name,
        })

    def close(self) -> None:
        """Stop and release the stream. Safe to call repeatedly."""
        self._handler = None
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except _DEVICE_ERRORS as e:
            log_event({"event_type": "CAPTURE_DEVICE_CLOSE_FAILED", "error": repr(e)})


class SoundDeviceOutput:
    """
    Mono float32 speaker stream driven by a TimelineMixer.

    Exposes the mixer's clock so it can back a PlaybackScheduler directly.
    """

    def __init__(self, profile: AudioProfile, *, device: int | str | None = None) -> None:
        self._profile = profile
        self._device = device
        self._mixer = TimelineMixer(native_sample_rate(device, "output"))
        self._stream: sd.OutputStream | None = None

    @property
    def sample_rate(self) -> int:
        return self._mixer.sample_rate

    def current_time(self) -> float:
        return self._mixer.current_time()

    def schedule(self, start_s: float, samples: np.ndarray) -> None:
        self._mixer.schedule(start_s, samples)

    def start(self) -> None:
        if self._stream is not None:
            return

        def callback(outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
            outdata[:, 0] = self._mixer.render(frames)

        try:
            stream = sd.OutputStream(
                samplerate=self._mixer.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._profile.playback_block_size,
                device=self._device,
                callback=callback,
            )
            stream.start()
        except _DEVICE_ERRORS as e:
            raise DeviceError(f"Audio output unavailable: {e}") from e

        self._stream = stream
        log_event({
            "event_type": "PLAYBACK_DEVICE_OPENED",
            "sample_rate": self._mixer.sample_rate,
            "profile": self._profile.name,
        })

    def close(self) -> None:
        self._mixer.clear()
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except _DEVICE_ERRORS as e:
            log_event({"event_type": "PLAYBACK_DEVICE_CLOSE_FAILED", "error": repr(e)})
