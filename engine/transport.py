"""
Transport: the command-facing playback state machine.

States: stopped (initial), playing, paused.

    any       play(new locator)   -> playing   tear down current track, load, start at 0
    playing   play(same / None)   -> playing   no-op
    paused    play(same / None)   -> playing   resume from frozen position
    playing   pause               -> paused    engine suspended, position frozen
    paused    pause               -> paused    no-op
    paused    resume              -> playing
    playing/paused  stop          -> stopped   source + device released, position 0
    playing/paused  seek(t)       -> same      clamp to [0, total], engine repositions
    playing/paused  step_*        -> same      seek(position +/- step_seconds)
    stopped   pause/resume/seek/step_*         no-op, "no_active_track"
    any       stop                -> stopped   always succeeds

End of stream and playback faults arrive from the engine thread and act as an
implicit stop (reasons "eof" / "fault").

All session reads and writes happen under ``self.lock``. Events are emitted
while the lock is held so listeners observe transitions in order; listeners
must not block.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional

from engine.commands import CommandResult
from engine.errors import NO_ACTIVE_TRACK, LoadError, TransportBusy
from engine.loader import ResourceLoader
from engine.messages.events import (
    REASON_EOF,
    REASON_FAULT,
    REASON_REPLACED,
    REASON_STOPPED,
    PlaybackFaultEvent,
    TrackFinishedEvent,
    TrackStartedEvent,
    TransportStateEvent,
)
from engine.playback_engine import PlaybackEngine
from engine.position import PositionReporter, clamp_position
from engine.session import PlaybackSession, SessionSnapshot, TransportState
from engine.tuning import TransportTuning, load_transport_tuning
from log.log_manager import LogManager
from log.log_record import TrackLogRecord


class Transport:
    def __init__(
        self,
        *,
        loader: Optional[ResourceLoader] = None,
        engine: Optional[PlaybackEngine] = None,
        tuning: Optional[TransportTuning] = None,
        log: Optional[LogManager] = None,
    ) -> None:
        self.tuning = tuning or load_transport_tuning()
        self.log = log or LogManager()
        self.loader = loader or ResourceLoader(
            retries=self.tuning.loader_retries,
            retry_delay_ms=self.tuning.loader_retry_delay_ms,
            log=self.log,
        )
        self.engine = engine or PlaybackEngine(
            block_frames=self.tuning.block_frames,
            device=self.tuning.output_device,
            max_consecutive_underruns=self.tuning.max_consecutive_underruns,
            log=self.log,
        )

        # sync primitive (RLock so listeners may query state from inside a callback)
        self.lock = threading.RLock()
        self.session = PlaybackSession()

        self._listeners: List[Callable[[object], None]] = []
        self._listeners_lock = threading.Lock()

        self.reporter = PositionReporter(
            self.current_state,
            interval_ms=self.tuning.position_push_interval_ms,
            log=self.log,
        )
        self.reporter.add_listener(self._emit)
        self.engine.bind(self)

    # ---------- locking / events ----------

    @contextmanager
    def _locked(self) -> Iterator[PlaybackSession]:
        if not self.lock.acquire(timeout=self.tuning.lock_timeout_s):
            raise TransportBusy(f"session lock not acquired within {self.tuning.lock_timeout_s}s")
        try:
            yield self.session
        finally:
            self.lock.release()

    def add_listener(self, callback: Callable[[object], None]) -> None:
        with self._listeners_lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[object], None]) -> None:
        with self._listeners_lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _emit(self, evt: object) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(evt)
            except Exception as exc:
                self.log.error(
                    source="transport",
                    message="listener_failed",
                    metadata={"event": type(evt).__name__, "error": str(exc)},
                )

    def _emit_state_unlocked(self) -> None:
        s = self.session
        self._emit(
            TransportStateEvent(
                state=s.state.value,
                current_track=s.current_track,
                position=s.position,
                total_duration=s.total_duration,
            )
        )

    # ---------- queries ----------

    def current_state(self) -> SessionSnapshot:
        with self._locked() as s:
            return s.snapshot()

    def current_position(self) -> float:
        return self.reporter.current_position()

    def start_position_push(self) -> None:
        self.reporter.start()

    # ---------- commands ----------

    def _no_active_track(self, command: str) -> CommandResult:
        self.log.debug(source="transport", message=f"{command}_ignored", metadata={"reason": NO_ACTIVE_TRACK})
        return CommandResult.failure(command, NO_ACTIVE_TRACK, "no active track", snapshot=self.session.snapshot())

    def play(self, locator: Optional[str] = None) -> CommandResult:
        with self._locked() as s:
            if locator is None or locator == s.current_track:
                if s.state is TransportState.PLAYING:
                    self.log.debug(locator=s.current_track or "", source="transport", message="play_ignored_already_playing")
                    return CommandResult.success("play", s.snapshot(), message="already playing")
                if s.state is TransportState.PAUSED:
                    return self._resume_unlocked("play")
                if locator is None:
                    return self._no_active_track("play")

            self.log.info(locator=locator, source="transport", message="play_requested")
            if s.state is not TransportState.STOPPED:
                self._teardown_unlocked(REASON_REPLACED)

            try:
                source = self.loader.load(locator)
            except LoadError as exc:
                self.log.warning(
                    locator=locator,
                    source="transport",
                    message="load_failed",
                    metadata={"error": exc.code, "detail": exc.message},
                )
                return CommandResult.failure("play", exc.code, exc.message, snapshot=s.snapshot())

            track = source.track
            s.generation += 1
            s.state = TransportState.PLAYING
            s.current_track = locator
            s.position = 0.0
            s.anchor_seconds = 0.0
            s.total_duration = track.duration_seconds
            s.sample_rate = track.sample_rate
            s.started_at = datetime.now()
            self.engine.start(source, 0.0, s.generation)

            self._emit(
                TrackStartedEvent(
                    locator=locator,
                    file_path=track.file_path,
                    tod_start_iso=s.started_at.isoformat(timespec="milliseconds"),
                    total_duration=s.total_duration,
                    sample_rate=s.sample_rate,
                    channels=track.channels,
                    codec=track.codec_info,
                )
            )
            self._emit_state_unlocked()
            return CommandResult.success("play", s.snapshot())

    def pause(self) -> CommandResult:
        with self._locked() as s:
            if s.state is TransportState.STOPPED:
                return self._no_active_track("pause")
            if s.state is TransportState.PAUSED:
                return CommandResult.success("pause", s.snapshot(), message="already paused")
            self.log.info(locator=s.current_track or "", source="transport", message="pause_requested")
            s.state = TransportState.PAUSED
            self.engine.suspend()
            self._emit_state_unlocked()
            return CommandResult.success("pause", s.snapshot())

    def resume(self) -> CommandResult:
        with self._locked() as s:
            if s.state is TransportState.STOPPED:
                return self._no_active_track("resume")
            if s.state is TransportState.PLAYING:
                return CommandResult.success("resume", s.snapshot(), message="already playing")
            return self._resume_unlocked("resume")

    def _resume_unlocked(self, command: str) -> CommandResult:
        s = self.session
        self.log.info(locator=s.current_track or "", source="transport", message="resume_requested")
        s.state = TransportState.PLAYING
        self.engine.resume()
        self._emit_state_unlocked()
        return CommandResult.success(command, s.snapshot())

    def stop(self) -> CommandResult:
        with self._locked() as s:
            self.log.info(locator=s.current_track or "", source="transport", message="stop_requested")
            if s.state is not TransportState.STOPPED:
                self._teardown_unlocked(REASON_STOPPED)
            return CommandResult.success("stop", s.snapshot())

    def seek(self, seconds: float) -> CommandResult:
        with self._locked() as s:
            if s.state is TransportState.STOPPED:
                return self._no_active_track("seek")
            return self._seek_unlocked(seconds, "seek")

    def step_forward(self) -> CommandResult:
        with self._locked() as s:
            if s.state is TransportState.STOPPED:
                return self._no_active_track("step_forward")
            return self._seek_unlocked(s.position + self.tuning.step_seconds, "step_forward")

    def step_backward(self) -> CommandResult:
        with self._locked() as s:
            if s.state is TransportState.STOPPED:
                return self._no_active_track("step_backward")
            return self._seek_unlocked(s.position - self.tuning.step_seconds, "step_backward")

    def _seek_unlocked(self, seconds: float, command: str) -> CommandResult:
        s = self.session
        target = clamp_position(seconds, s.total_duration)
        self.log.info(
            locator=s.current_track or "",
            source="transport",
            message=f"{command}_requested",
            metadata={"requested": seconds, "target": target},
        )
        # New epoch: progress still in flight for the old cursor is dropped.
        s.generation += 1
        s.anchor_seconds = target
        s.position = target
        self.engine.reposition(target, s.generation)
        self._emit_state_unlocked()
        return CommandResult.success(command, s.snapshot())

    # ---------- teardown ----------

    def _teardown_unlocked(self, reason: str) -> None:
        s = self.session
        locator = s.current_track
        position = s.position
        total = s.total_duration
        started_at = s.started_at

        self.engine.release()
        s.reset()

        if locator is not None:
            self.log.log_track_finished(
                TrackLogRecord(
                    locator=locator,
                    started_at=started_at or datetime.now(),
                    stopped_at=datetime.now(),
                    duration_seconds=total,
                    position_seconds=position,
                    reason=reason,
                )
            )
            self._emit(TrackFinishedEvent(locator=locator, reason=reason, position=position))
        self._emit_state_unlocked()

    # ---------- engine callbacks (playback thread) ----------

    def on_engine_progress(self, generation: int, frames_consumed: int, sample_rate: int) -> None:
        with self._locked() as s:
            if generation != s.generation or s.state is not TransportState.PLAYING:
                return
            s.position = PositionReporter.position_from_frames(
                s.anchor_seconds,
                frames_consumed,
                sample_rate or s.sample_rate,
                s.total_duration,
            )

    def on_engine_finished(self, generation: int) -> None:
        with self._locked() as s:
            if generation != s.generation or s.state is TransportState.STOPPED:
                return
            if s.total_duration is not None:
                s.position = s.total_duration
            self.log.info(locator=s.current_track or "", source="transport", message="end_of_stream")
            self._teardown_unlocked(REASON_EOF)

    def on_engine_fault(self, generation: int, error: str) -> None:
        with self._locked() as s:
            if generation != s.generation or s.state is TransportState.STOPPED:
                return
            locator = s.current_track
            self.log.error(locator=locator or "", source="transport", message="playback_fault", metadata={"error": error})
            self._emit(PlaybackFaultEvent(locator=locator, error=error))
            self._teardown_unlocked(REASON_FAULT)

    # ---------- lifecycle ----------

    def shutdown(self) -> bool:
        """Stop playback, stop the position push and join the playback thread."""
        self.reporter.stop()
        try:
            self.stop()
        except TransportBusy:
            self.log.error(source="transport", message="shutdown_lock_timeout")
        return self.engine.shutdown(timeout=self.tuning.stop_timeout_s)
