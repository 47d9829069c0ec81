"""
Transport Command API

Commands are the only way callers (UI, CLI, service queue) drive the
transport. Every command is a frozen dataclass carrying at most one argument,
so it can cross a multiprocessing queue unchanged and cannot be mutated after
it is issued.

Each command receives a ``command_id`` at construction; the matching
``CommandResult`` echoes it back so asynchronous callers can correlate.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Optional, Union

from engine.session import SessionSnapshot


def _new_command_id() -> str:
    return uuid.uuid4().hex


# ==============================================================================
# TRANSPORT COMMANDS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class TransportPlay:
    """Load ``locator`` and start it from 0, or keep playing if it is already current."""
    locator: str
    command_id: str = field(default_factory=_new_command_id)


@dataclass(frozen=True, slots=True)
class TransportPause:
    command_id: str = field(default_factory=_new_command_id)


@dataclass(frozen=True, slots=True)
class TransportResume:
    command_id: str = field(default_factory=_new_command_id)


@dataclass(frozen=True, slots=True)
class TransportStop:
    command_id: str = field(default_factory=_new_command_id)


@dataclass(frozen=True, slots=True)
class TransportSeek:
    """Seek to ``position`` (seconds or timedelta); clamped to the track bounds."""
    position: Union[float, int, timedelta]
    command_id: str = field(default_factory=_new_command_id)


@dataclass(frozen=True, slots=True)
class TransportStepForward:
    command_id: str = field(default_factory=_new_command_id)


@dataclass(frozen=True, slots=True)
class TransportStepBackward:
    command_id: str = field(default_factory=_new_command_id)


TransportCommand = Union[
    TransportPlay,
    TransportPause,
    TransportResume,
    TransportStop,
    TransportSeek,
    TransportStepForward,
    TransportStepBackward,
]

COMMAND_NAMES = {
    TransportPlay: "play",
    TransportPause: "pause",
    TransportResume: "resume",
    TransportStop: "stop",
    TransportSeek: "seek",
    TransportStepForward: "step_forward",
    TransportStepBackward: "step_backward",
}


def command_name(cmd: object) -> str:
    return COMMAND_NAMES.get(type(cmd), type(cmd).__name__)


# ==============================================================================
# RESULTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class CommandResult:
    """
    Outcome of one command.

    Fields:
        command: Operation name ("play", "seek", ...).
        ok: True when the command succeeded (including idempotent no-ops).
        snapshot: Session snapshot taken right after the command was handled.
        position: Position in seconds after the command (clamped for seek/step).
        error: Error code from engine.errors, or None on success.
        message: Human-readable detail for logs and UI.
        command_id: Echo of the originating command's id ("" when unknown).
    """
    command: str
    ok: bool
    snapshot: Optional[SessionSnapshot] = None
    position: float = 0.0
    error: Optional[str] = None
    message: str = ""
    command_id: str = ""

    @classmethod
    def success(cls, command: str, snapshot: SessionSnapshot, *, message: str = "", command_id: str = "") -> "CommandResult":
        return cls(
            command=command,
            ok=True,
            snapshot=snapshot,
            position=snapshot.position,
            message=message,
            command_id=command_id,
        )

    @classmethod
    def failure(
        cls,
        command: str,
        error: str,
        message: str = "",
        *,
        snapshot: Optional[SessionSnapshot] = None,
        command_id: str = "",
    ) -> "CommandResult":
        return cls(
            command=command,
            ok=False,
            snapshot=snapshot,
            position=snapshot.position if snapshot is not None else 0.0,
            error=error,
            message=message,
            command_id=command_id,
        )

    def with_command_id(self, command_id: str) -> "CommandResult":
        return replace(self, command_id=command_id)
