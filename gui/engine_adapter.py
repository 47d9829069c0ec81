"""
Engine Adapter: boundary layer between the Qt GUI and the AudioService.

This module is the ONLY bridge between the GUI and the transport process.
It provides:
- Conversion of transport events (engine/messages/events.py) and
  CommandResults into Qt signals
- Methods that put transport commands (engine/commands.py) on the IPC queue
- Non-blocking polling of the event queue using QTimer

Rules:
- engine/ never imports Qt widgets; this adapter never holds audio logic
- The adapter never blocks the Qt thread
- All interaction with the transport goes through the two queues

```
 PlayControls / MainWindow (Qt)
            |
      EngineAdapter (this module)
        |              |
   cmd_q (Queue)   evt_q (Queue)
        |              |
   AudioService process (engine/audio_service.py)
```
"""

from __future__ import annotations

import queue
from datetime import timedelta
from typing import Any, Optional, Union

from PySide6.QtCore import QObject, QTimer, Signal

from engine.commands import (
    CommandResult,
    TransportPause,
    TransportPlay,
    TransportResume,
    TransportSeek,
    TransportStepBackward,
    TransportStepForward,
    TransportStop,
)
from engine.messages.events import (
    PlaybackFaultEvent,
    PositionEvent,
    TrackFinishedEvent,
    TrackStartedEvent,
    TransportStateEvent,
)


class EngineAdapter(QObject):
    """
    Qt-to-AudioService bridge.

    Usage:
        proc, cmd_q, evt_q = start_audio_service_process()
        adapter = EngineAdapter(cmd_q, evt_q, parent=window)
        adapter.position_changed.connect(controls.set_position)
        adapter.play("/music/track.flac")
    """

    # lifecycle (delivered in order, never coalesced)
    transport_state_changed = Signal(str, object, float, object)  # state, locator, position, total
    track_started = Signal(str, object)  # locator, total_duration
    track_finished = Signal(str, str, float)  # locator, reason, position

    # telemetry (coalesced to the latest value per poll)
    position_changed = Signal(float, object, object)  # position, remaining, total

    # diagnostics
    playback_fault = Signal(str, str)  # locator, error
    command_failed = Signal(str, str, str)  # command, error code, message
    command_completed = Signal(object)  # CommandResult

    def __init__(
        self,
        cmd_q: Any,
        evt_q: Any,
        parent: Optional[QObject] = None,
        poll_interval_ms: int = 16,
        max_drain_per_poll: int = 500,
    ) -> None:
        super().__init__(parent=parent)
        self._cmd_q = cmd_q
        self._evt_q = evt_q
        self._max_drain_per_poll = max(1, int(max_drain_per_poll))

        # Mirror of the service state, updated only from TransportStateEvent.
        self.transport_state: str = "stopped"
        self.current_track: Optional[str] = None

        self._poll_timer = QTimer(self)
        self._poll_timer.setInterval(int(poll_interval_ms))
        self._poll_timer.timeout.connect(self.poll_events)
        self._poll_timer.start()

    # ===========================================================================
    # COMMAND METHODS (GUI -> AudioService)
    # ===========================================================================

    def _send(self, cmd: object) -> None:
        try:
            self._cmd_q.put_nowait(cmd)
        except queue.Full:
            print(f"[EngineAdapter] command queue full, dropped {type(cmd).__name__}")

    def play(self, locator: str) -> None:
        self._send(TransportPlay(locator=locator))

    def pause(self) -> None:
        self._send(TransportPause())

    def resume(self) -> None:
        self._send(TransportResume())

    def toggle_play(self) -> None:
        """Play button semantics: resume a paused track, otherwise nothing to do."""
        if self.transport_state == "paused":
            self.resume()

    def stop(self) -> None:
        self._send(TransportStop())

    def seek(self, position: Union[float, timedelta]) -> None:
        self._send(TransportSeek(position=position))

    def step_forward(self) -> None:
        self._send(TransportStepForward())

    def step_backward(self) -> None:
        self._send(TransportStepBackward())

    def shutdown(self) -> None:
        """Request graceful shutdown of the AudioService process."""
        self._poll_timer.stop()
        self._send(None)

    # ===========================================================================
    # EVENT POLLING (AudioService -> GUI)
    # ===========================================================================

    def poll_events(self) -> int:
        """Drain the event queue (bounded) and emit signals; returns events handled."""
        pending = []
        while len(pending) < self._max_drain_per_poll:
            try:
                pending.append(self._evt_q.get_nowait())
            except queue.Empty:
                break

        latest_position: Optional[PositionEvent] = None
        for evt in pending:
            if isinstance(evt, PositionEvent):
                latest_position = evt
                continue
            if isinstance(evt, TransportStateEvent):
                # the state event carries a newer position than any earlier push
                latest_position = None
            self._dispatch_event(evt)
        if latest_position is not None and self.transport_state == "playing":
            self.position_changed.emit(
                latest_position.position, latest_position.remaining, latest_position.total_duration
            )
        return len(pending)

    def _dispatch_event(self, evt: object) -> None:
        if isinstance(evt, TransportStateEvent):
            self.transport_state = evt.state
            self.current_track = evt.current_track
            self.transport_state_changed.emit(evt.state, evt.current_track, evt.position, evt.total_duration)
            remaining = None if evt.total_duration is None else max(0.0, evt.total_duration - evt.position)
            self.position_changed.emit(evt.position, remaining, evt.total_duration)

        elif isinstance(evt, TrackStartedEvent):
            self.track_started.emit(evt.locator, evt.total_duration)

        elif isinstance(evt, TrackFinishedEvent):
            self.track_finished.emit(evt.locator, evt.reason, evt.position)

        elif isinstance(evt, PlaybackFaultEvent):
            self.playback_fault.emit(evt.locator or "", evt.error)

        elif isinstance(evt, CommandResult):
            if not evt.ok:
                self.command_failed.emit(evt.command, evt.error or "", evt.message)
            self.command_completed.emit(evt)

        # unknown event types are ignored
