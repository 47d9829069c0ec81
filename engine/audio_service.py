"""
AudioService: the transport hosted in its own process, isolated from Qt.

Playback keeps running even when a native file dialog or another blocking
call stalls the GUI thread.

The service talks to the GUI through two multiprocessing queues:
- cmd_q: GUI sends transport commands (TransportPlay, TransportSeek, ...)
- evt_q: service sends back one CommandResult per command plus every
  transport event (TransportStateEvent, PositionEvent, TrackFinishedEvent, ...)

``None`` on cmd_q shuts the service down.
"""

from __future__ import annotations

import multiprocessing as mp
import os
import queue
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Union

from engine.command_surface import CommandSurface
from engine.transport import Transport
from engine.tuning import load_transport_tuning
from log.log_manager import LogManager


@dataclass(frozen=True, slots=True)
class AudioServiceConfig:
    """Audio service configuration."""
    tuning_path: Optional[Union[str, Path]] = None
    poll_interval_ms: float = 5.0  # how long one cmd_q.get waits
    position_push: bool = True

    # If the GUI process dies, the service must not keep playing on its own.
    parent_pid: Optional[int] = None
    parent_watchdog_enabled: bool = True
    parent_watchdog_poll_s: float = 0.5


def _is_parent_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    if os.name == "nt":
        # no cheap existence probe; rely on the None sentinel
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    return True


def _put_event(evt_q: Any, evt: object, log: LogManager) -> None:
    try:
        evt_q.put_nowait(evt)
    except queue.Full:
        log.warning(source="service", message="event_dropped", metadata={"event": type(evt).__name__})


def audio_service_main(
    cmd_q: mp.Queue,
    evt_q: mp.Queue,
    config: AudioServiceConfig,
    *,
    transport_factory: Optional[Callable[[], Transport]] = None,
) -> None:
    """
    Main loop for the audio service process.

    1. Waits briefly for the next command on cmd_q
    2. Dispatches it through the CommandSurface
    3. Puts the CommandResult on evt_q (events are forwarded as they happen)
    4. Checks the parent watchdog

    Stops when cmd_q receives None or the parent process disappears.
    """
    if transport_factory is not None:
        transport = transport_factory()
    else:
        transport = Transport(tuning=load_transport_tuning(config.tuning_path))
    log = transport.log
    surface = CommandSurface(transport)
    transport.add_listener(lambda evt: _put_event(evt_q, evt, log))

    parent_pid = int(config.parent_pid) if config.parent_pid else int(os.getppid())
    watchdog_poll_s = float(config.parent_watchdog_poll_s or 0.5)
    next_watchdog_check = time.monotonic() + watchdog_poll_s
    poll_s = max(0.001, float(config.poll_interval_ms) / 1000.0)

    if config.position_push:
        transport.start_position_push()
    log.info(source="service", message="service_started", metadata={"pid": os.getpid(), "parent_pid": parent_pid})

    try:
        while True:
            if config.parent_watchdog_enabled:
                now_mono = time.monotonic()
                if now_mono >= next_watchdog_check:
                    next_watchdog_check = now_mono + watchdog_poll_s
                    if not _is_parent_alive(parent_pid):
                        log.warning(source="service", message="parent_gone", metadata={"parent_pid": parent_pid})
                        break

            try:
                cmd = cmd_q.get(timeout=poll_s)
            except queue.Empty:
                continue

            if cmd is None:
                break
            result = surface.dispatch(cmd)
            _put_event(evt_q, result, log)
    finally:
        transport.shutdown()
        log.info(source="service", message="service_stopped")


def start_audio_service_process(
    config: Optional[AudioServiceConfig] = None,
) -> Tuple[mp.Process, mp.Queue, mp.Queue]:
    """Spawn the service; returns (process, cmd_q, evt_q)."""
    ctx = mp.get_context("spawn")
    cmd_q = ctx.Queue()
    evt_q = ctx.Queue()
    if config is None:
        config = AudioServiceConfig(parent_pid=os.getpid())
    proc = ctx.Process(
        target=audio_service_main,
        args=(cmd_q, evt_q, config),
        name="audio-service",
        daemon=True,
    )
    proc.start()
    return proc, cmd_q, evt_q
