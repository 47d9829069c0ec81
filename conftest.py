from __future__ import annotations

import os
import threading
import time
from typing import Callable, Dict, List, Optional

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import numpy as np
import pytest

from engine.errors import NotFound
from engine.output_sink import OutputConfig
from engine.playback_engine import PlaybackEngine
from engine.track import Track
from engine.transport import Transport
from engine.tuning import TransportTuning, with_overrides
from log.log_manager import LogManager


class FakeSource:
    """Silent in-memory track with the AudioSource interface."""

    def __init__(
        self,
        locator: str,
        *,
        duration_seconds: Optional[float] = 10.0,
        sample_rate: int = 1000,
        channels: int = 2,
        fail_after_reads: Optional[int] = None,
    ) -> None:
        self.locator = locator
        self.file_path = f"/fake/{locator}"
        self.sample_rate = sample_rate
        self.channels = channels
        self.duration_seconds = duration_seconds
        self.total_frames = int((duration_seconds or 3600.0) * sample_rate)
        self.cursor = 0
        self.reads = 0
        self.seeks: List[float] = []
        self.closed = False
        self._fail_after_reads = fail_after_reads

    def read(self, max_frames: int) -> np.ndarray:
        if self.closed:
            raise RuntimeError("read after close")
        self.reads += 1
        if self._fail_after_reads is not None and self.reads > self._fail_after_reads:
            raise RuntimeError("corrupt frame")
        n = max(0, min(int(max_frames), self.total_frames - self.cursor))
        self.cursor += n
        return np.zeros((n, self.channels), dtype=np.float32)

    def seek(self, seconds: float) -> None:
        self.seeks.append(seconds)
        self.cursor = min(self.total_frames, int(seconds * self.sample_rate))

    @property
    def track(self) -> Track:
        return Track(
            locator=self.locator,
            file_path=self.file_path,
            channels=self.channels,
            sample_rate=self.sample_rate,
            duration_frames=None if self.duration_seconds is None else self.total_frames,
            codec_info="pcm_f32le",
        )

    def close(self) -> None:
        self.closed = True


class FakeSink:
    """Output sink that records blocks; ``pace_s`` stands in for device latency."""

    def __init__(self, cfg: OutputConfig, *, pace_s: float = 0.002, underflows: bool = False) -> None:
        self.cfg = cfg
        self.pace_s = pace_s
        self.underflows = underflows
        self.blocks = 0
        self.frames = 0
        self.paused = False
        self.flushes = 0
        self.closed = False

    def write(self, pcm: np.ndarray) -> bool:
        if self.closed:
            raise RuntimeError("write after close")
        if self.pace_s:
            time.sleep(self.pace_s)
        self.blocks += 1
        self.frames += int(pcm.shape[0])
        return self.underflows

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def flush(self) -> None:
        self.flushes += 1

    def close(self) -> None:
        self.closed = True


class SinkRecorder:
    """Sink factory that keeps every sink it creates."""

    def __init__(self, **sink_kwargs) -> None:
        self.sinks: List[FakeSink] = []
        self._sink_kwargs = sink_kwargs

    def __call__(self, cfg: OutputConfig) -> FakeSink:
        sink = FakeSink(cfg, **self._sink_kwargs)
        self.sinks.append(sink)
        return sink


class FakeLoader:
    def __init__(self, factories: Optional[Dict[str, Callable[[str], FakeSource]]] = None) -> None:
        self.factories = dict(factories or {})
        self.loaded: List[FakeSource] = []

    def add(self, locator: str, **source_kwargs) -> None:
        self.factories[locator] = lambda loc: FakeSource(loc, **source_kwargs)

    def load(self, locator: str) -> FakeSource:
        factory = self.factories.get(locator)
        if factory is None:
            raise NotFound(locator, f"no such file: {locator}")
        source = factory(locator)
        self.loaded.append(source)
        return source


class FakeEngine:
    """Records engine instructions; tests drive the listener callbacks by hand."""

    def __init__(self) -> None:
        self.listener = None
        self.calls: List[tuple] = []
        self.active = None
        self.shutdown_called = False

    def bind(self, listener) -> None:
        self.listener = listener

    def start(self, source, from_seconds: float, generation: int) -> None:
        self.calls.append(("start", source.locator, from_seconds, generation))
        self.active = source

    def suspend(self) -> None:
        self.calls.append(("suspend",))

    def resume(self) -> None:
        self.calls.append(("resume",))

    def reposition(self, seconds: float, generation: int) -> None:
        self.calls.append(("reposition", seconds, generation))

    def release(self) -> None:
        self.calls.append(("release",))
        if self.active is not None:
            self.active.close()
            self.active = None

    def barrier(self, timeout: float = 1.0) -> bool:
        return True

    def shutdown(self, timeout: float = 5.0) -> bool:
        self.shutdown_called = True
        self.release()
        return True

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]


class EventRecorder:
    def __init__(self) -> None:
        self.events: List[object] = []
        self._lock = threading.Lock()

    def __call__(self, evt: object) -> None:
        with self._lock:
            self.events.append(evt)

    def of_type(self, cls) -> list:
        with self._lock:
            return [e for e in self.events if isinstance(e, cls)]


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def log() -> LogManager:
    return LogManager(echo=False)


@pytest.fixture
def tuning() -> TransportTuning:
    return with_overrides(TransportTuning(), step_seconds=5.0, lock_timeout_s=1.0, position_push_interval_ms=10)


@pytest.fixture
def loader() -> FakeLoader:
    fl = FakeLoader()
    fl.add("a.mp3", duration_seconds=60.0)
    fl.add("b.mp3", duration_seconds=30.0)
    fl.add("short.wav", duration_seconds=3.0)
    return fl


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def transport(loader, fake_engine, tuning, log, events) -> Transport:
    t = Transport(loader=loader, engine=fake_engine, tuning=tuning, log=log)
    t.add_listener(events)
    return t


@pytest.fixture
def sinks() -> SinkRecorder:
    return SinkRecorder()


@pytest.fixture
def live_transport(loader, sinks, tuning, log, events):
    """Transport driving a real PlaybackEngine thread against fake sources/sinks."""
    engine = PlaybackEngine(block_frames=50, sink_factory=sinks, log=log)
    t = Transport(loader=loader, engine=engine, tuning=tuning, log=log)
    t.add_listener(events)
    yield t
    t.shutdown()


@pytest.fixture
def qapp():
    from PySide6.QtWidgets import QApplication

    return QApplication.instance() or QApplication([])
