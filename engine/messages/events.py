"""
Transport Public Event API

This module defines the events the transport pushes to its listeners (the
audio service forwards them to the GUI event queue). Events are immutable and
carry no Qt types, so they pickle across multiprocessing queues.

Event Categories:
1. LIFECYCLE EVENTS: Delivered for every transition, in order.
   - TransportStateEvent: state/track/position changed
   - TrackStartedEvent: a track was loaded and output started
   - TrackFinishedEvent: the active track was torn down (any reason)

2. TELEMETRY EVENTS: Best-effort (may be dropped when the queue is full).
   - PositionEvent: periodic position push while playing

3. DIAGNOSTIC EVENTS:
   - PlaybackFaultEvent: steady-state decode/output failure (implies stop)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from engine.errors import PLAYBACK_FAULT

API_VERSION = "1.0"

# Reasons carried by TrackFinishedEvent
REASON_STOPPED = "stopped"
REASON_REPLACED = "replaced"
REASON_EOF = "eof"
REASON_FAULT = "fault"

# ==============================================================================
# LIFECYCLE EVENTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class TransportStateEvent:
    """
    Emitted after every state transition and every accepted seek.

    Invariant: current_track is None iff state == "stopped".
    Invariant: position <= total_duration when total_duration is known.
    """
    state: str
    current_track: Optional[str]
    position: float
    total_duration: Optional[float]


@dataclass(frozen=True, slots=True)
class TrackStartedEvent:
    """
    Emitted once per successful play of a new locator.

    Fields:
        locator: Locator as passed to play().
        file_path: Resolved absolute path of the resource.
        tod_start_iso: ISO 8601 wall-clock time the track started.
        total_duration: Track length in seconds, None when unknown.
        sample_rate: Native sample rate used for output.
        channels: Output channel count.
        codec: Decoder name, None when not known.
    """
    locator: str
    file_path: str
    tod_start_iso: str
    total_duration: Optional[float]
    sample_rate: int
    channels: int
    codec: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TrackFinishedEvent:
    """
    Emitted exactly once for each TrackStartedEvent.

    reason:
        - "stopped": stop command
        - "replaced": a play with a different locator tore the track down
        - "eof": end of stream reached
        - "fault": playback fault (see PlaybackFaultEvent)
    """
    locator: str
    reason: str
    position: float


# ==============================================================================
# TELEMETRY EVENTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class PositionEvent:
    """Periodic position push (default every 250 ms) while playing."""
    locator: Optional[str]
    position: float
    remaining: Optional[float]
    total_duration: Optional[float]


# ==============================================================================
# DIAGNOSTIC EVENTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class PlaybackFaultEvent:
    """The engine failed mid-playback; a TrackFinishedEvent(reason="fault") follows."""
    locator: Optional[str]
    error: str
    code: str = PLAYBACK_FAULT
