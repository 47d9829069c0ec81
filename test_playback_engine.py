from __future__ import annotations

import sys
import threading
import time
from types import SimpleNamespace

import pytest

from conftest import FakeSource, SinkRecorder, wait_until
from engine.output_sink import OutputConfig, SoundDeviceSink
from engine.playback_engine import PlaybackEngine
from engine.session import TransportState


class RecordingListener:
    def __init__(self) -> None:
        self.progress = []
        self.finished = []
        self.faults = []
        self.done = threading.Event()

    def on_engine_progress(self, generation, frames_consumed, sample_rate):
        self.progress.append((generation, frames_consumed, sample_rate))

    def on_engine_finished(self, generation):
        self.finished.append(generation)
        self.done.set()

    def on_engine_fault(self, generation, error):
        self.faults.append((generation, error))
        self.done.set()


@pytest.fixture
def engine_parts(log):
    sinks = SinkRecorder(pace_s=0.001)
    engine = PlaybackEngine(block_frames=100, sink_factory=sinks, log=log)
    listener = RecordingListener()
    engine.bind(listener)
    yield engine, sinks, listener
    engine.shutdown(timeout=2.0)


def test_plays_to_end_of_stream(engine_parts):
    engine, sinks, listener = engine_parts
    source = FakeSource("t.wav", duration_seconds=1.0, sample_rate=1000)

    engine.start(source, 0.0, 7)

    assert listener.done.wait(2.0)
    assert listener.finished == [7]
    assert listener.faults == []
    assert sinks.sinks[0].frames == 1000
    assert listener.progress[-1] == (7, 1000, 1000)
    assert source.closed
    assert sinks.sinks[0].closed


def test_sink_opened_at_source_format(engine_parts):
    engine, sinks, listener = engine_parts
    source = FakeSource("t.wav", duration_seconds=0.2, sample_rate=22050, channels=1)

    engine.start(source, 0.0, 1)

    assert listener.done.wait(2.0)
    cfg = sinks.sinks[0].cfg
    assert cfg.sample_rate == 22050
    assert cfg.channels == 1
    assert cfg.block_frames == 100


def test_start_from_offset_seeks_source(engine_parts):
    engine, sinks, listener = engine_parts
    source = FakeSource("t.wav", duration_seconds=1.0, sample_rate=1000)

    engine.start(source, 0.5, 1)

    assert listener.done.wait(2.0)
    assert source.seeks == [0.5]
    assert sinks.sinks[0].frames == 500


def test_suspend_halts_delivery_until_resume(engine_parts):
    engine, sinks, listener = engine_parts
    source = FakeSource("t.wav", duration_seconds=60.0, sample_rate=1000)
    engine.start(source, 0.0, 1)
    assert wait_until(lambda: sinks.sinks and sinks.sinks[0].blocks > 2)

    engine.suspend()
    assert engine.barrier()
    sink = sinks.sinks[0]
    blocks = sink.blocks
    time.sleep(0.05)

    assert sink.paused
    assert sink.blocks == blocks

    engine.resume()
    assert wait_until(lambda: sink.blocks > blocks)
    assert not sink.paused


def test_reposition_flushes_and_restarts_frame_count(engine_parts):
    engine, sinks, listener = engine_parts
    source = FakeSource("t.wav", duration_seconds=60.0, sample_rate=1000)
    engine.start(source, 0.0, 1)
    assert wait_until(lambda: len(listener.progress) > 3)

    engine.reposition(30.0, 2)
    assert wait_until(lambda: any(gen == 2 for gen, _, _ in listener.progress))

    assert source.seeks == [30.0]
    assert sinks.sinks[0].flushes == 1
    first_new = next(p for p in listener.progress if p[0] == 2)
    assert first_new[1] == 100


def test_release_closes_source_and_sink(engine_parts):
    engine, sinks, listener = engine_parts
    source = FakeSource("t.wav", duration_seconds=60.0, sample_rate=1000)
    engine.start(source, 0.0, 1)
    assert wait_until(lambda: bool(sinks.sinks))

    engine.release()
    assert engine.barrier()

    assert source.closed
    assert sinks.sinks[0].closed
    assert listener.finished == []


def test_decode_error_reports_fault(engine_parts):
    engine, sinks, listener = engine_parts
    source = FakeSource("bad.mp3", duration_seconds=60.0, fail_after_reads=3)

    engine.start(source, 0.0, 4)

    assert listener.done.wait(2.0)
    assert listener.faults[0][0] == 4
    assert "corrupt frame" in listener.faults[0][1]
    assert source.closed


def test_consecutive_underruns_report_fault(log):
    sinks = SinkRecorder(pace_s=0.0, underflows=True)
    engine = PlaybackEngine(block_frames=10, max_consecutive_underruns=5, sink_factory=sinks, log=log)
    listener = RecordingListener()
    engine.bind(listener)
    try:
        engine.start(FakeSource("t.wav", duration_seconds=60.0), 0.0, 1)
        assert listener.done.wait(2.0)
        assert "underrun" in listener.faults[0][1]
        assert sinks.sinks[0].blocks == 5
    finally:
        engine.shutdown()


def test_sink_open_failure_reports_fault(log):
    def failing_factory(cfg):
        raise OSError("no output device")

    engine = PlaybackEngine(sink_factory=failing_factory, log=log)
    listener = RecordingListener()
    engine.bind(listener)
    source = FakeSource("t.wav")
    try:
        engine.start(source, 0.0, 3)
        assert listener.done.wait(2.0)
        assert listener.faults[0][0] == 3
        assert "no output device" in listener.faults[0][1]
        assert source.closed
    finally:
        engine.shutdown()


def test_shutdown_joins_thread(engine_parts):
    engine, sinks, listener = engine_parts
    source = FakeSource("t.wav", duration_seconds=60.0)
    engine.start(source, 0.0, 1)
    assert engine.running

    assert engine.shutdown(timeout=2.0)
    assert not engine.running
    assert source.closed


# ---------------------------------------------------------------------------
# Transport + real engine thread
# ---------------------------------------------------------------------------


def test_position_advances_while_playing(live_transport):
    live_transport.play("a.mp3")

    assert wait_until(lambda: live_transport.current_state().position > 0.1)
    assert live_transport.current_state().state is TransportState.PLAYING


def test_position_frozen_while_paused(live_transport):
    live_transport.play("a.mp3")
    assert wait_until(lambda: live_transport.current_state().position > 0.1)

    live_transport.pause()
    assert live_transport.engine.barrier()
    frozen = live_transport.current_state().position
    time.sleep(0.05)

    assert live_transport.current_state().position == frozen


def test_position_monotonic_while_playing(live_transport):
    live_transport.play("a.mp3")
    samples = []
    for _ in range(20):
        samples.append(live_transport.current_state().position)
        time.sleep(0.005)

    assert samples == sorted(samples)


def test_seek_on_live_engine_moves_position(live_transport):
    live_transport.play("a.mp3")
    assert wait_until(lambda: live_transport.current_state().position > 0.05)

    live_transport.seek(40.0)

    assert wait_until(lambda: live_transport.current_state().position > 40.0)
    assert live_transport.current_state().position < 45.0


def test_track_plays_out_to_stopped(live_transport, events):
    from engine.messages.events import TrackFinishedEvent

    live_transport.play("short.wav")
    live_transport.seek(2.9)

    assert wait_until(lambda: live_transport.current_state().state is TransportState.STOPPED, timeout=3.0)
    assert events.of_type(TrackFinishedEvent)[-1].reason == "eof"


def test_decode_fault_surfaces_as_stop(live_transport, loader, events):
    from engine.messages.events import PlaybackFaultEvent

    loader.add("broken.mp3", duration_seconds=60.0, fail_after_reads=2)
    live_transport.play("broken.mp3")

    assert wait_until(lambda: live_transport.current_state().state is TransportState.STOPPED)
    assert events.of_type(PlaybackFaultEvent)[0].locator == "broken.mp3"


def test_replaced_track_releases_its_output(live_transport, loader, sinks):
    live_transport.play("a.mp3")
    assert wait_until(lambda: len(sinks.sinks) == 1)

    live_transport.play("b.mp3")
    assert live_transport.engine.barrier()

    assert loader.loaded[0].closed
    assert sinks.sinks[0].closed
    assert wait_until(lambda: len(sinks.sinks) == 2)
    assert not sinks.sinks[1].closed
    assert live_transport.current_state().current_track == "b.mp3"


def test_concurrent_commands_leave_consistent_session(live_transport, loader):
    locators = ["a.mp3", "b.mp3", "short.wav"]
    barrier = threading.Barrier(6)
    workers_done = threading.Event()
    torn = []
    samples = []

    def observer():
        while not workers_done.is_set():
            snap = live_transport.current_state()
            samples.append(snap)
            if (snap.current_track is None) != (snap.state is TransportState.STOPPED):
                torn.append(snap)
            elif snap.total_duration is not None and not 0.0 <= snap.position <= snap.total_duration:
                torn.append(snap)
            time.sleep(0.0005)

    def worker(i):
        barrier.wait()
        for n in range(10):
            op = (i + n) % 4
            if op == 0:
                live_transport.play(locators[(i + n) % len(locators)])
            elif op == 1:
                live_transport.pause()
            elif op == 2:
                live_transport.seek(float(n))
            else:
                live_transport.step_forward()

    watcher = threading.Thread(target=observer)
    watcher.start()
    threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
    for th in threads:
        th.start()
    for th in threads:
        th.join(5.0)
    workers_done.set()
    watcher.join(5.0)

    assert samples
    assert torn == []

    assert live_transport.engine.barrier()
    snap = live_transport.current_state()
    assert (snap.current_track is None) == (snap.state is TransportState.STOPPED)
    if snap.total_duration is not None:
        assert snap.position <= snap.total_duration
    # Only the current track may still hold an open source.
    open_sources = [s for s in loader.loaded if not s.closed]
    assert len(open_sources) <= 1
    if open_sources:
        assert open_sources[0].locator == snap.current_track


def test_reposition_after_end_of_stream_repeats_the_report(engine_parts):
    engine, sinks, listener = engine_parts
    engine.start(FakeSource("t.wav", duration_seconds=0.2), 0.0, 1)
    assert listener.done.wait(2.0)

    engine.reposition(0.0, 2)
    assert engine.barrier()

    assert listener.finished == [1, 2]



class FakeOutputStream:
    """Stands in for sounddevice.OutputStream; records start/stop/abort calls."""

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.active = False
        self.calls = []
        self.writes = 0

    def start(self):
        self.calls.append("start")
        self.active = True

    def stop(self):
        self.calls.append("stop")
        self.active = False

    def abort(self):
        self.calls.append("abort")
        self.active = False

    def close(self):
        self.calls.append("close")

    def write(self, data):
        if not self.active:
            raise RuntimeError("write to inactive stream")
        time.sleep(0.001)
        self.writes += 1
        return False


@pytest.fixture
def output_streams(monkeypatch):
    streams = []

    def make_stream(**kwargs):
        stream = FakeOutputStream(**kwargs)
        streams.append(stream)
        return stream

    monkeypatch.setitem(sys.modules, "sounddevice", SimpleNamespace(OutputStream=make_stream))
    return streams


def test_flush_keeps_a_paused_stream_stopped(output_streams):
    sink = SoundDeviceSink(OutputConfig(sample_rate=1000, channels=2, block_frames=100))
    stream = output_streams[0]

    sink.pause()
    sink.flush()

    assert not stream.active
    assert stream.calls == ["start", "stop", "abort"]

    sink.resume()
    assert stream.active


def test_flush_restarts_an_active_stream(output_streams):
    sink = SoundDeviceSink(OutputConfig(sample_rate=1000, channels=2, block_frames=100))
    stream = output_streams[0]

    sink.flush()

    assert stream.active
    assert stream.calls == ["start", "abort", "start"]


def test_reposition_while_suspended_keeps_output_stopped(output_streams, log):
    engine = PlaybackEngine(block_frames=100, log=log)
    listener = RecordingListener()
    engine.bind(listener)
    try:
        engine.start(FakeSource("t.wav", duration_seconds=60.0, sample_rate=1000), 0.0, 1)
        assert wait_until(lambda: output_streams and output_streams[0].writes > 2)
        stream = output_streams[0]

        engine.suspend()
        engine.reposition(30.0, 2)
        assert engine.barrier()
        writes = stream.writes
        time.sleep(0.05)

        assert not stream.active
        assert stream.writes == writes
        assert listener.faults == []

        engine.resume()
        assert wait_until(lambda: stream.writes > writes)
        assert stream.active
    finally:
        engine.shutdown(timeout=2.0)
