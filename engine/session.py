from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class TransportState(str, Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass(slots=True)
class PlaybackSession:
    """The one mutable session owned by the transport.

    Only touched while holding ``Transport.lock``. ``generation`` is bumped on
    every start, reposition and teardown so late engine reports from an older
    epoch can be recognised and dropped.
    """
    state: TransportState = TransportState.STOPPED
    current_track: Optional[str] = None
    position: float = 0.0
    total_duration: Optional[float] = None
    generation: int = 0
    # position at the last start/reposition; engine frame counts are relative to it
    anchor_seconds: float = 0.0
    sample_rate: int = 0
    started_at: Optional[datetime] = None

    def reset(self) -> None:
        self.state = TransportState.STOPPED
        self.current_track = None
        self.position = 0.0
        self.total_duration = None
        self.anchor_seconds = 0.0
        self.sample_rate = 0
        self.started_at = None
        self.generation += 1

    def snapshot(self) -> "SessionSnapshot":
        return SessionSnapshot(
            state=self.state,
            current_track=self.current_track,
            position=self.position,
            total_duration=self.total_duration,
        )


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    state: TransportState
    current_track: Optional[str]
    position: float
    total_duration: Optional[float]

    @property
    def remaining(self) -> Optional[float]:
        if self.total_duration is None:
            return None
        return max(0.0, self.total_duration - self.position)
