from __future__ import annotations

import threading
from typing import Callable, List, Optional

from engine.messages.events import PositionEvent
from engine.session import SessionSnapshot, TransportState
from log.log_manager import LogManager


def frames_to_seconds(frames: int, sample_rate: int) -> float:
    if sample_rate <= 0:
        return 0.0
    return max(0, int(frames)) / float(sample_rate)


def clamp_position(seconds: float, total_duration: Optional[float]) -> float:
    """Clamp to [0, total_duration]; only the lower bound applies when the length is unknown."""
    seconds = max(0.0, float(seconds))
    if total_duration is not None:
        seconds = min(seconds, float(total_duration))
    return seconds


class PositionReporter:
    """
    Derives the playback position from frames consumed by the engine.

    position = anchor + frames_consumed / sample_rate, clamped to the track
    length, where the anchor is the position of the last start/reposition.

    Also drives the optional periodic push: a daemon ticker that emits a
    PositionEvent to every listener each ``interval_ms`` while the transport
    is playing. Paused and stopped sessions emit nothing.
    """

    def __init__(
        self,
        snapshot_fn: Callable[[], SessionSnapshot],
        *,
        interval_ms: int = 250,
        log: Optional[LogManager] = None,
    ) -> None:
        self._snapshot_fn = snapshot_fn
        self.interval_s = max(10, int(interval_ms)) / 1000.0
        self.log = log or LogManager()
        self._listeners: List[Callable[[PositionEvent], None]] = []
        self._listeners_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @staticmethod
    def position_from_frames(
        anchor_seconds: float,
        frames_consumed: int,
        sample_rate: int,
        total_duration: Optional[float],
    ) -> float:
        return clamp_position(anchor_seconds + frames_to_seconds(frames_consumed, sample_rate), total_duration)

    def current_position(self) -> float:
        return self._snapshot_fn().position

    # ---------- push ----------

    def add_listener(self, callback: Callable[[PositionEvent], None]) -> None:
        with self._listeners_lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[PositionEvent], None]) -> None:
        with self._listeners_lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    @property
    def running(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="position-push", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)
        self._thread = None

    def tick(self) -> Optional[PositionEvent]:
        """Emit one push if the transport is playing; returns the event sent."""
        snap = self._snapshot_fn()
        if snap.state is not TransportState.PLAYING:
            return None
        evt = PositionEvent(
            locator=snap.current_track,
            position=snap.position,
            remaining=snap.remaining,
            total_duration=snap.total_duration,
        )
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(evt)
            except Exception as exc:
                self.log.error(source="position", message="listener_failed", metadata={"error": str(exc)})
        return evt

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                self.tick()
            except Exception as exc:
                # snapshot_fn may raise TransportBusy on lock timeout; skip the tick
                self.log.warning(source="position", message="tick_failed", metadata={"error": str(exc)})
