from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

@dataclass(frozen=True, slots=True)
class LogRecord:
    locator: str
    tod: datetime
    level: str
    source: str
    message: str
    metadata: Dict[str, Any]


@dataclass(frozen=True, slots=True)
class TrackLogRecord:
    """History record for a track once it has been torn down."""
    locator: str
    started_at: datetime
    stopped_at: datetime
    duration_seconds: Optional[float]  # total track duration, None if unknown
    position_seconds: float  # where playback was when the track ended
    reason: str  # "stopped", "replaced", "eof", "fault"

    @property
    def played_seconds(self) -> float:
        return max(0.0, (self.stopped_at - self.started_at).total_seconds())
