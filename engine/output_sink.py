from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np


@dataclass(frozen=True, slots=True)
class OutputConfig:
    sample_rate: int
    channels: int
    block_frames: int
    device: Optional[Union[int, str]] = None


class SoundDeviceSink:
    """Blocking sounddevice output stream for one track.

    ``write`` blocks until the device has room, which paces frame delivery
    at real time. Lives entirely on the playback thread.
    """

    def __init__(self, cfg: OutputConfig) -> None:
        import sounddevice as sd

        self.cfg = cfg
        device = cfg.device
        if isinstance(device, str) and device.isdigit():
            device = int(device)
        self._stream = sd.OutputStream(
            samplerate=cfg.sample_rate,
            channels=cfg.channels,
            dtype="float32",
            blocksize=cfg.block_frames,
            device=device,
        )
        self._stream.start()
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed and bool(self._stream.active)

    def write(self, pcm: np.ndarray) -> bool:
        """Write one block; returns True when the device reported an underflow."""
        underflowed = self._stream.write(np.ascontiguousarray(pcm, dtype=np.float32))
        return bool(underflowed)

    def pause(self) -> None:
        # stop() drains the device buffer but keeps the stream open.
        if self._stream.active:
            self._stream.stop()

    def resume(self) -> None:
        if not self._closed and not self._stream.active:
            self._stream.start()

    def flush(self) -> None:
        """Discard queued audio (used by reposition); output is briefly silent."""
        if self._closed:
            return
        was_active = bool(self._stream.active)
        self._stream.abort()
        # a paused stream stays stopped until resume()
        if was_active:
            self._stream.start()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._stream.abort()
        finally:
            self._stream.close()


SinkFactory = Callable[[OutputConfig], SoundDeviceSink]


def default_sink_factory(cfg: OutputConfig) -> SoundDeviceSink:
    return SoundDeviceSink(cfg)
