from __future__ import annotations
from collections import deque
from datetime import datetime
import os
import threading
from typing import Any, Deque, Dict, List, Optional
from PySide6.QtCore import QObject, Signal
from log.log_record import LogRecord, TrackLogRecord

class LogManager(QObject):
    # Emitted for every record that passes the level gate
    record_logged = Signal(LogRecord)
    # Emitted when a track is torn down and its history record is written
    track_finished_logged = Signal(TrackLogRecord)

    def __init__(self, *, history_max: int = 300, echo: Optional[bool] = None):
        super().__init__()
        self._debug_enabled = self._env_truthy("TRANSPORT_LOG_DEBUG", default=False)
        # Console echo can be silenced for tests and embedding.
        self._echo = self._env_truthy("TRANSPORT_LOG_ECHO", default=True) if echo is None else bool(echo)
        self._lock = threading.Lock()
        self._records: Deque[LogRecord] = deque(maxlen=max(1, int(history_max)))
        self._history: Deque[TrackLogRecord] = deque(maxlen=max(1, int(history_max)))

    @staticmethod
    def _env_truthy(name: str, *, default: bool = False) -> bool:
        v = os.environ.get(name)
        if v is None:
            return default
        return v.strip().lower() in ("1", "true", "yes", "on")

    @property
    def debug_enabled(self) -> bool:
        return self._debug_enabled

    def set_debug_enabled(self, enabled: bool) -> None:
        self._debug_enabled = bool(enabled)

    def debug(self, *, locator: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        if not self._debug_enabled:
            return
        self._write("debug", locator=locator, source=source, message=message, metadata=metadata)

    def info(self, *, locator: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._write("info", locator=locator, source=source, message=message, metadata=metadata)

    def warning(self, *, locator: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        # Warnings and errors are always printed.
        self._write("warning", locator=locator, source=source, message=message, metadata=metadata)

    def error(self, *, locator: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._write("error", locator=locator, source=source, message=message, metadata=metadata)

    def _write(self, level: str, *, locator: str, source: str, message: str, metadata: Optional[Dict[str, Any]]) -> None:
        rec = LogRecord(
            locator=locator or "",
            tod=datetime.now(),
            level=level,
            source=source,
            message=message,
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._records.append(rec)
        if self._echo:
            ts = rec.tod.isoformat(timespec="milliseconds")
            print(f"[{ts}] [{rec.source}] {rec.level.upper()} track={rec.locator} {rec.message} {rec.metadata}")
        self.record_logged.emit(rec)

    def log_track_finished(self, record: TrackLogRecord) -> None:
        """Store a finished-track record and notify listeners (UI, export, etc.)."""
        with self._lock:
            self._history.append(record)
        if self._debug_enabled:
            ts = record.started_at.isoformat(timespec="milliseconds")
            self.debug(
                locator=record.locator,
                source="history",
                message="track_finished",
                metadata={"started_at": ts, "reason": record.reason, "position": round(record.position_seconds, 3)},
            )
        self.track_finished_logged.emit(record)

    def get_records(self, limit: int = 200) -> List[LogRecord]:
        with self._lock:
            records = list(self._records)
        if limit <= 0 or limit >= len(records):
            return records
        return records[-limit:]

    def get_history(self) -> List[TrackLogRecord]:
        with self._lock:
            return list(self._history)
