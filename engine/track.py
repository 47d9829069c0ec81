from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

@dataclass(frozen=True, slots=True)
class Track:
    locator: str
    file_path: str
    channels: int
    sample_rate: int
    duration_frames: Optional[int] = None
    codec_info: Optional[str] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.duration_frames is None or self.sample_rate <= 0:
            return None
        return self.duration_frames / float(self.sample_rate)
