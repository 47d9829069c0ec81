from __future__ import annotations

from typing import Iterator, List, Optional

import av
import numpy as np

from engine.track import Track


def _normalize_audio(arr: np.ndarray) -> np.ndarray:
    """Planar (channels, samples) -> float32 PCM shaped (frames, channels)."""
    if arr.ndim == 1:
        arr = arr[None, :]
    arr = arr.T
    if arr.dtype == np.float32:
        out = arr
    elif np.issubdtype(arr.dtype, np.floating):
        out = arr.astype(np.float32, copy=False)
    elif np.issubdtype(arr.dtype, np.signedinteger):
        info = np.iinfo(arr.dtype)
        out = (arr.astype(np.float32) / max(abs(info.min), info.max)).astype(np.float32, copy=False)
    else:
        out = arr.astype(np.float32)
    return np.ascontiguousarray(out)


def _ensure_channels(pcm: np.ndarray, target_channels: int) -> np.ndarray:
    frames, ch = pcm.shape
    if ch == target_channels:
        return pcm
    if ch > target_channels:
        return pcm[:, :target_channels]
    pad = np.zeros((frames, target_channels - ch), dtype=np.float32)
    return np.concatenate([pcm, pad], axis=1)


class AudioSource:
    """One opened, decodable track.

    Owned by the playback engine from ``start`` until ``release``; never
    shared between tracks. All methods must be called from a single thread
    (the playback context), which keeps the container/decoder/resampler
    confined.
    """

    def __init__(self, locator: str, file_path: str, container, stream) -> None:
        self.locator = locator
        self.file_path = file_path
        self._container = container
        self._stream = stream

        ctx = stream.codec_context
        native_rate = int(getattr(stream, "rate", 0) or getattr(ctx, "sample_rate", 0) or 0)
        if native_rate <= 0:
            raise ValueError("audio stream reports no sample rate")
        native_channels = int(getattr(ctx, "channels", 0) or 0)
        if native_channels <= 0:
            native_channels = len(getattr(ctx.layout, "channels", ())) or 2

        self.sample_rate = native_rate
        # Multichannel material is folded down to stereo by the resampler.
        self.channels = 1 if native_channels == 1 else 2
        self._layout = "mono" if self.channels == 1 else "stereo"
        self.codec_name = str(getattr(ctx, "name", "") or "")
        self.duration_seconds = self._probe_duration()

        self._resampler = self._new_resampler()
        self._frame_iter: Iterator = self._container.decode(self._stream)
        self._pending: List[np.ndarray] = []
        self._pending_frames = 0
        self._eof = False
        self._skip_until: Optional[float] = None
        self._closed = False

    # ---------- metadata ----------

    def _probe_duration(self) -> Optional[float]:
        stream = self._stream
        try:
            if stream.duration is not None and stream.time_base is not None:
                seconds = float(stream.duration * stream.time_base)
                if seconds > 0:
                    return seconds
        except (TypeError, ValueError):
            pass
        container_duration = getattr(self._container, "duration", None)
        if container_duration:
            return float(container_duration) / float(av.time_base)
        return None

    @property
    def track(self) -> Track:
        duration_frames = None
        if self.duration_seconds is not None:
            duration_frames = int(round(self.duration_seconds * self.sample_rate))
        return Track(
            locator=self.locator,
            file_path=str(self.file_path),
            channels=self.channels,
            sample_rate=self.sample_rate,
            duration_frames=duration_frames,
            codec_info=self.codec_name or None,
        )

    @property
    def eof(self) -> bool:
        return self._eof and self._pending_frames == 0

    # ---------- decoding ----------

    def _new_resampler(self):
        return av.AudioResampler(format="fltp", layout=self._layout, rate=self.sample_rate)

    def _convert(self, frames) -> List[np.ndarray]:
        out = []
        for out_frame in frames or ():
            pcm = _normalize_audio(out_frame.to_ndarray())
            out.append(_ensure_channels(pcm, self.channels))
        return out

    def _trim_after_seek(self, frame, chunks: List[np.ndarray]) -> List[np.ndarray]:
        """Drop samples that precede the seek target inside the first decoded frames."""
        target = self._skip_until
        if target is None:
            return chunks
        if frame.pts is None or frame.time_base is None:
            self._skip_until = None
            return chunks
        frame_start = float(frame.pts * frame.time_base)
        skip = int(round((target - frame_start) * self.sample_rate))
        if skip <= 0:
            self._skip_until = None
            return chunks
        kept = []
        for pcm in chunks:
            if skip >= pcm.shape[0]:
                skip -= pcm.shape[0]
                continue
            kept.append(pcm[skip:])
            skip = 0
        if skip == 0:
            self._skip_until = None
        return kept

    def _push(self, chunks: List[np.ndarray]) -> None:
        for pcm in chunks:
            if pcm.size:
                self._pending.append(pcm)
                self._pending_frames += pcm.shape[0]

    def _fill(self, wanted: int) -> None:
        while self._pending_frames < wanted and not self._eof:
            try:
                frame = next(self._frame_iter)
            except StopIteration:
                # Drain whatever the resampler is still holding.
                self._push(self._convert(self._resampler.resample(None)))
                self._eof = True
                break
            chunks = self._convert(self._resampler.resample(frame))
            self._push(self._trim_after_seek(frame, chunks))

    def read(self, max_frames: int) -> np.ndarray:
        """Return up to ``max_frames`` frames; an empty array means end of stream."""
        if self._closed:
            raise RuntimeError("AudioSource is closed")
        max_frames = max(1, int(max_frames))
        self._fill(max_frames)
        if self._pending_frames == 0:
            return np.zeros((0, self.channels), dtype=np.float32)

        pcm = self._pending[0] if len(self._pending) == 1 else np.concatenate(self._pending, axis=0)
        out = pcm[:max_frames]
        rest = pcm[max_frames:]
        self._pending = [rest] if rest.shape[0] else []
        self._pending_frames = int(rest.shape[0])
        return out

    def seek(self, seconds: float) -> None:
        """Move the decode cursor to ``seconds`` and drop everything buffered."""
        if self._closed:
            raise RuntimeError("AudioSource is closed")
        seconds = max(0.0, float(seconds))
        time_base = self._stream.time_base
        target_ts = int(seconds / time_base) if time_base else int(seconds * av.time_base)
        self._container.seek(target_ts, stream=self._stream, any_frame=False, backward=True)
        self._frame_iter = self._container.decode(self._stream)
        self._resampler = self._new_resampler()
        self._pending = []
        self._pending_frames = 0
        self._eof = False
        self._skip_until = seconds if seconds > 0 else None

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pending = []
        self._pending_frames = 0
        self._container.close()
