"""
PlaybackEngine: the decode/output side of the transport.

Runs one dedicated thread (the playback context). The command context never
touches the decoder or the output device directly; it only enqueues
instructions:

    EngineStart(source, from_seconds, generation)
    EngineSuspend / EngineResume
    EngineReposition(seconds, generation)
    EngineRelease
    None  -> shut the thread down

and receives reports back through the bound listener:

    on_engine_progress(generation, frames_consumed, sample_rate)
    on_engine_finished(generation)           end of stream
    on_engine_fault(generation, error)       decode/output failure

``frames_consumed`` counts frames written to the device since the last
start/reposition. Every report carries the generation of the epoch that
produced it so the listener can drop stale ones.

Pending instructions are always drained before the next block is delivered,
so a release/start pair never lets a block of the old track through.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple

from engine.output_sink import OutputConfig, SinkFactory, default_sink_factory
from log.log_manager import LogManager


@dataclass(frozen=True, slots=True)
class EngineStart:
    source: Any
    from_seconds: float
    generation: int


@dataclass(frozen=True, slots=True)
class EngineSuspend:
    pass


@dataclass(frozen=True, slots=True)
class EngineResume:
    pass


@dataclass(frozen=True, slots=True)
class EngineReposition:
    seconds: float
    generation: int


@dataclass(frozen=True, slots=True)
class EngineRelease:
    pass


@dataclass(frozen=True, slots=True)
class _EngineBarrier:
    done: threading.Event


class EngineListener(Protocol):
    def on_engine_progress(self, generation: int, frames_consumed: int, sample_rate: int) -> None: ...

    def on_engine_finished(self, generation: int) -> None: ...

    def on_engine_fault(self, generation: int, error: str) -> None: ...


_IDLE_POLL_S = 0.1
_NO_MESSAGE = object()


class PlaybackEngine:
    def __init__(
        self,
        *,
        block_frames: int = 2048,
        device: Optional[str] = None,
        max_consecutive_underruns: int = 32,
        sink_factory: Optional[SinkFactory] = None,
        log: Optional[LogManager] = None,
        thread_name: str = "playback",
    ) -> None:
        self.block_frames = max(1, int(block_frames))
        self.device = device
        self.max_consecutive_underruns = max(1, int(max_consecutive_underruns))
        self._sink_factory = sink_factory or default_sink_factory
        self.log = log or LogManager()
        self._thread_name = thread_name

        self._cmd_q: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._thread_lock = threading.Lock()
        self._listener: Optional[EngineListener] = None

        # Playback-thread state. Only the playback thread reads or writes these.
        self._source: Any = None
        self._sink: Any = None
        self._generation = 0
        self._frames = 0
        self._suspended = False
        self._underruns = 0
        # last end-of-stream/fault outcome, replayed if a reposition arrives after it
        self._terminal: Optional[Tuple[str, tuple]] = None

    # ------------------------------------------------------------------
    # Command-context API (never blocks on audio I/O)
    # ------------------------------------------------------------------

    def bind(self, listener: EngineListener) -> None:
        self._listener = listener

    @property
    def running(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive()

    def _ensure_thread(self) -> None:
        with self._thread_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name=self._thread_name, daemon=True)
            self._thread.start()

    def start(self, source: Any, from_seconds: float, generation: int) -> None:
        self._ensure_thread()
        self._cmd_q.put(EngineStart(source=source, from_seconds=float(from_seconds), generation=int(generation)))

    def suspend(self) -> None:
        self._cmd_q.put(EngineSuspend())

    def resume(self) -> None:
        self._cmd_q.put(EngineResume())

    def reposition(self, seconds: float, generation: int) -> None:
        self._cmd_q.put(EngineReposition(seconds=float(seconds), generation=int(generation)))

    def release(self) -> None:
        self._cmd_q.put(EngineRelease())

    def barrier(self, timeout: float = 1.0) -> bool:
        """Wait until every instruction queued so far has been handled."""
        if not self.running:
            return True
        done = threading.Event()
        self._cmd_q.put(_EngineBarrier(done))
        return done.wait(timeout)

    def shutdown(self, timeout: float = 5.0) -> bool:
        """Release the active track and join the playback thread.

        Returns False when the thread did not finish within ``timeout``.
        """
        t = self._thread
        if t is None:
            return True
        self._cmd_q.put(None)
        t.join(timeout=timeout)
        if t.is_alive():
            self.log.error(source="engine", message="shutdown_timeout", metadata={"timeout_s": timeout})
            return False
        self._thread = None
        return True

    # ------------------------------------------------------------------
    # Playback context
    # ------------------------------------------------------------------

    def _run(self) -> None:
        self.log.debug(source="engine", message="playback_thread_started", metadata={})
        while True:
            idle = self._source is None or self._suspended
            try:
                msg = self._cmd_q.get(timeout=_IDLE_POLL_S) if idle else self._cmd_q.get_nowait()
            except queue.Empty:
                msg = _NO_MESSAGE

            if msg is None:
                self._release_active()
                break
            if msg is not _NO_MESSAGE:
                self._handle(msg)
                continue
            if not idle:
                self._deliver_block()
        self.log.debug(source="engine", message="playback_thread_stopped", metadata={})

    def _handle(self, msg: object) -> None:
        if isinstance(msg, EngineStart):
            self._release_active()
            self._start(msg)
        elif isinstance(msg, EngineSuspend):
            if self._source is not None and not self._suspended:
                self._suspended = True
                self._guard_sink_call("pause")
        elif isinstance(msg, EngineResume):
            if self._source is not None and self._suspended:
                self._suspended = False
                self._guard_sink_call("resume")
        elif isinstance(msg, EngineReposition):
            self._reposition(msg)
        elif isinstance(msg, EngineRelease):
            self._terminal = None
            self._release_active()
        elif isinstance(msg, _EngineBarrier):
            msg.done.set()
        else:
            self.log.warning(source="engine", message="unknown_instruction", metadata={"type": type(msg).__name__})

    def _start(self, msg: EngineStart) -> None:
        source = msg.source
        self._terminal = None
        self._source = source
        self._generation = msg.generation
        self._frames = 0
        self._suspended = False
        self._underruns = 0
        try:
            if msg.from_seconds > 0:
                source.seek(msg.from_seconds)
            cfg = OutputConfig(
                sample_rate=int(source.sample_rate),
                channels=int(source.channels),
                block_frames=self.block_frames,
                device=self.device,
            )
            self._sink = self._sink_factory(cfg)
        except Exception as exc:
            self._fail(f"output start failed: {type(exc).__name__}: {exc}")
            return
        self.log.debug(
            locator=getattr(source, "locator", ""),
            source="engine",
            message="output_started",
            metadata={"sample_rate": source.sample_rate, "channels": source.channels, "generation": msg.generation},
        )

    def _reposition(self, msg: EngineReposition) -> None:
        if self._source is None:
            if self._terminal is not None:
                # The track ended before the reposition reached us; the report
                # went out under the old generation, so repeat it.
                method, extra = self._terminal
                self._notify(method, msg.generation, *extra)
            return
        try:
            self._source.seek(msg.seconds)
            if self._sink is not None:
                self._sink.flush()
        except Exception as exc:
            self._generation = msg.generation
            self._fail(f"seek failed: {type(exc).__name__}: {exc}")
            return
        self._generation = msg.generation
        self._frames = 0
        self._underruns = 0

    def _deliver_block(self) -> None:
        source = self._source
        generation = self._generation
        try:
            pcm = source.read(self.block_frames)
            if pcm.shape[0] == 0:
                self._release_active()
                self._terminal = ("on_engine_finished", ())
                self._notify("on_engine_finished", generation)
                return
            underflowed = self._sink.write(pcm)
        except Exception as exc:
            self._fail(f"{type(exc).__name__}: {exc}")
            return

        self._frames += int(pcm.shape[0])
        if underflowed:
            self._underruns += 1
            self.log.debug(
                locator=getattr(source, "locator", ""),
                source="engine",
                message="output_underflow",
                metadata={"consecutive": self._underruns},
            )
            if self._underruns >= self.max_consecutive_underruns:
                self._fail(f"output underrun ({self._underruns} consecutive blocks)")
                return
        else:
            self._underruns = 0
        self._notify("on_engine_progress", generation, self._frames, int(source.sample_rate))

    def _fail(self, error: str) -> None:
        generation = self._generation
        locator = getattr(self._source, "locator", "")
        self.log.error(locator=locator, source="engine", message="playback_fault", metadata={"error": error})
        self._release_active()
        self._terminal = ("on_engine_fault", (error,))
        self._notify("on_engine_fault", generation, error)

    def _guard_sink_call(self, method: str) -> None:
        if self._sink is None:
            return
        try:
            getattr(self._sink, method)()
        except Exception as exc:
            self._fail(f"output {method} failed: {type(exc).__name__}: {exc}")

    def _release_active(self) -> None:
        source, sink = self._source, self._sink
        self._source = None
        self._sink = None
        self._suspended = False
        self._frames = 0
        if sink is not None:
            try:
                sink.close()
            except Exception as exc:
                self.log.warning(source="engine", message="sink_close_failed", metadata={"error": str(exc)})
        if source is not None:
            try:
                source.close()
            except Exception as exc:
                self.log.warning(source="engine", message="source_close_failed", metadata={"error": str(exc)})

    def _notify(self, method: str, *args: object) -> None:
        listener = self._listener
        if listener is None:
            return
        try:
            getattr(listener, method)(*args)
        except Exception as exc:
            # A listener bug must not take down the playback thread.
            self.log.error(source="engine", message="listener_failed", metadata={"callback": method, "error": str(exc)})
