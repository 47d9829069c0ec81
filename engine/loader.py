"""
Resource Loader: locator -> AudioSource.

Accepts a plain filesystem path, a ``~`` path or a ``file://`` URI and opens
it for decoding with PyAV. The loader never starts playback; the only side
effect is the opened container handed back inside the AudioSource.

Failure mapping:
    missing file / directory           -> NotFound
    non-file URI scheme                -> Unsupported
    empty file, non-audio header       -> Unsupported   (header sniffed with fleep)
    FFmpeg cannot probe/decode         -> Unsupported
    OSError while reading/opening      -> IoFailure      (after a bounded retry)
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import av
import fleep

from engine.audio_source import AudioSource
from engine.errors import IoFailure, NotFound, Unsupported
from log.log_manager import LogManager

HEADER_BYTES = 128

# fleep categories that may carry an audio stream
_PLAYABLE_TYPES = ("audio", "video")


def resolve_locator(locator: str) -> Path:
    """Turn a locator into a local path, or raise NotFound/Unsupported."""
    text = (locator or "").strip()
    if not text:
        raise NotFound(locator, "empty locator")

    parsed = urlparse(text)
    scheme = (parsed.scheme or "").lower()
    if scheme == "file":
        if parsed.netloc not in ("", "localhost"):
            raise Unsupported(locator, f"remote file host not supported: {parsed.netloc}")
        path_text = url2pathname(parsed.path)
    elif len(scheme) > 1:
        # Single-letter schemes are Windows drive letters ("C:\\music\\a.mp3").
        raise Unsupported(locator, f"unsupported locator scheme: {scheme}")
    else:
        path_text = text
    return Path(path_text).expanduser()


class ResourceLoader:
    def __init__(
        self,
        *,
        retries: int = 2,
        retry_delay_ms: int = 50,
        log: Optional[LogManager] = None,
    ) -> None:
        self.retries = max(0, int(retries))
        self.retry_delay_s = max(0, int(retry_delay_ms)) / 1000.0
        self.log = log

    def load(self, locator: str) -> AudioSource:
        path = resolve_locator(locator)
        if not path.exists():
            raise NotFound(locator, f"no such file: {path}")
        if not path.is_file():
            raise NotFound(locator, f"not a regular file: {path}")

        last_error: Optional[OSError] = None
        for attempt in range(self.retries + 1):
            try:
                header = self._read_header(path)
                self._check_header(locator, header)
                return self._open(locator, path)
            except FileNotFoundError as exc:
                # Deleted between the existence check and the open.
                raise NotFound(locator, f"no such file: {path}") from exc
            except OSError as exc:
                last_error = exc
                if self.log is not None:
                    self.log.warning(
                        locator=locator,
                        source="loader",
                        message="read_failed",
                        metadata={"attempt": attempt + 1, "error": str(exc)},
                    )
                if attempt < self.retries and self.retry_delay_s > 0:
                    time.sleep(self.retry_delay_s)
        raise IoFailure(locator, f"read failed after {self.retries + 1} attempts: {last_error}") from last_error

    @staticmethod
    def _read_header(path: Path) -> bytes:
        with path.open("rb") as f:
            return f.read(HEADER_BYTES)

    def _check_header(self, locator: str, header: bytes) -> None:
        if not header:
            raise Unsupported(locator, "empty file")
        info = fleep.get(header)
        kinds = list(getattr(info, "type", None) or [])
        if kinds and not any(info.type_matches(kind) for kind in _PLAYABLE_TYPES):
            raise Unsupported(locator, f"not an audio resource: {', '.join(kinds)}")

    def _open(self, locator: str, path: Path) -> AudioSource:
        try:
            container = av.open(str(path.resolve()), mode="r")
        except OSError:
            # errno-backed FFmpeg errors subclass OSError; load() retries them
            raise
        except av.error.FFmpegError as exc:
            raise Unsupported(locator, f"cannot decode: {exc}") from exc

        stream = next((s for s in container.streams if s.type == "audio"), None)
        if stream is None:
            container.close()
            raise Unsupported(locator, "no audio stream")
        try:
            source = AudioSource(locator, str(path.resolve()), container, stream)
        except (ValueError, av.error.FFmpegError) as exc:
            container.close()
            raise Unsupported(locator, f"cannot decode: {exc}") from exc

        if self.log is not None:
            self.log.debug(
                locator=locator,
                source="loader",
                message="opened",
                metadata={
                    "sample_rate": source.sample_rate,
                    "channels": source.channels,
                    "duration": source.duration_seconds,
                    "codec": source.codec_name,
                },
            )
        return source

