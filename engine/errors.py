"""
Transport error taxonomy.

Errors raised inside the engine carry a stable ``code`` string. The command
surface never lets them escape: every error reaches the caller as a
``CommandResult`` whose ``error`` field holds the code.

Codes:
    not_found        Locator does not address an existing local resource.
    unsupported      Resource exists but cannot be decoded (format/codec/scheme).
    io_failure       Transient read error after the loader's bounded retry.
    playback_fault   Steady-state decode/output failure (implicit stop); carried by
                     PlaybackFaultEvent rather than raised.
    no_active_track  Command needs a loaded track but the transport is stopped.
    invalid_command  Malformed command (missing locator, non-numeric position).
    busy             Session lock could not be acquired within lock_timeout_s.
    internal         Unexpected exception caught at the command surface.
"""

from __future__ import annotations

NOT_FOUND = "not_found"
UNSUPPORTED = "unsupported"
IO_FAILURE = "io_failure"
PLAYBACK_FAULT = "playback_fault"
NO_ACTIVE_TRACK = "no_active_track"
INVALID_COMMAND = "invalid_command"
BUSY = "busy"
INTERNAL = "internal"


class TransportError(Exception):
    code: str = INTERNAL

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class LoadError(TransportError):
    """Raised by the resource loader; the transport stays stopped."""

    code = IO_FAILURE

    def __init__(self, locator: str, message: str = "") -> None:
        super().__init__(message or f"{self.code}: {locator}")
        self.locator = locator


class NotFound(LoadError):
    code = NOT_FOUND


class Unsupported(LoadError):
    code = UNSUPPORTED


class IoFailure(LoadError):
    code = IO_FAILURE


class InvalidCommand(TransportError):
    code = INVALID_COMMAND


class TransportBusy(TransportError):
    code = BUSY
