"""
Command Surface: the single entry point for external callers.

Validates the shape of each command, forwards it to the Transport and turns
every outcome, including exceptions, into a CommandResult. Holds no state of
its own, so any number of threads may dispatch through one instance.
"""

from __future__ import annotations

import math
from datetime import timedelta
from numbers import Real
from typing import Optional, Union

from engine.commands import (
    CommandResult,
    TransportCommand,
    TransportPause,
    TransportPlay,
    TransportResume,
    TransportSeek,
    TransportStepBackward,
    TransportStepForward,
    TransportStop,
    command_name,
)
from engine.errors import INTERNAL, InvalidCommand, TransportError
from engine.session import SessionSnapshot
from engine.transport import Transport


def _validate_locator(locator: object) -> str:
    if not isinstance(locator, str) or not locator.strip():
        raise InvalidCommand("play requires a non-empty locator")
    return locator


def _validate_position(position: object) -> float:
    if isinstance(position, timedelta):
        return position.total_seconds()
    if isinstance(position, bool) or not isinstance(position, Real):
        raise InvalidCommand(f"seek position must be a number of seconds, got {type(position).__name__}")
    seconds = float(position)
    if not math.isfinite(seconds):
        raise InvalidCommand(f"seek position must be finite, got {seconds}")
    return seconds


class CommandSurface:
    def __init__(self, transport: Transport) -> None:
        self.transport = transport
        self.log = transport.log

    def dispatch(self, cmd: TransportCommand) -> CommandResult:
        name = command_name(cmd)
        command_id = getattr(cmd, "command_id", "") or ""
        try:
            result = self._handle(cmd)
        except TransportError as exc:
            self.log.warning(
                source="commands",
                message="command_failed",
                metadata={"command": name, "error": exc.code, "detail": exc.message},
            )
            result = CommandResult.failure(name, exc.code, exc.message, snapshot=self._safe_snapshot())
        except Exception as exc:
            self.log.error(
                source="commands",
                message="command_crashed",
                metadata={"command": name, "error": f"{type(exc).__name__}: {exc}"},
            )
            result = CommandResult.failure(
                name,
                INTERNAL,
                f"{type(exc).__name__}: {exc}",
                snapshot=self._safe_snapshot(),
            )
        return result.with_command_id(command_id)

    def _handle(self, cmd: object) -> CommandResult:
        if isinstance(cmd, TransportPlay):
            return self.transport.play(_validate_locator(cmd.locator))
        if isinstance(cmd, TransportPause):
            return self.transport.pause()
        if isinstance(cmd, TransportResume):
            return self.transport.resume()
        if isinstance(cmd, TransportStop):
            return self.transport.stop()
        if isinstance(cmd, TransportSeek):
            return self.transport.seek(_validate_position(cmd.position))
        if isinstance(cmd, TransportStepForward):
            return self.transport.step_forward()
        if isinstance(cmd, TransportStepBackward):
            return self.transport.step_backward()
        raise InvalidCommand(f"unknown command: {type(cmd).__name__}")

    def _safe_snapshot(self) -> Optional[SessionSnapshot]:
        try:
            return self.transport.current_state()
        except TransportError:
            return None

    # ---------- helpers ----------

    def play(self, locator: str) -> CommandResult:
        return self.dispatch(TransportPlay(locator=locator))

    def pause(self) -> CommandResult:
        return self.dispatch(TransportPause())

    def resume(self) -> CommandResult:
        return self.dispatch(TransportResume())

    def stop(self) -> CommandResult:
        return self.dispatch(TransportStop())

    def seek(self, position: Union[float, int, timedelta]) -> CommandResult:
        return self.dispatch(TransportSeek(position=position))

    def step_forward(self) -> CommandResult:
        return self.dispatch(TransportStepForward())

    def step_backward(self) -> CommandResult:
        return self.dispatch(TransportStepBackward())

    def current_state(self) -> SessionSnapshot:
        return self.transport.current_state()
