# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
PlaybackSink — shared plumbing for room radio players.

A sink renders one stream at a time and reports its lifecycle back to the
orchestrator through a single event handler:

    handler(kind, generation, error=None)

where kind is "start", "finish" or "error" and generation is the tag the
stream was handed over with.  The orchestrator uses the tag to drop events
from streams it has already replaced.

Subclass contract:

    class MySink(PlaybackSink):
        id   = "mpv"
        name = "mpv"

        async def play(self, stream, generation): ...
        async def pause(self) -> bool: ...
        async def resume(self) -> bool: ...
        async def destroy(self): ...

pause() and resume() are no-ops returning False when the sink is already in
that state or has nothing attached.
"""

import logging

log = logging.getLogger(__name__)

START = "start"
FINISH = "finish"
ERROR = "error"


class PlaybackSink:
    # ── Subclass must set these ──
    id: str = ""
    name: str = ""

    def __init__(self):
        self.paused: bool = False
        self.generation: int | None = None  # tag of the attached stream
        self._event_handler = None

    def set_event_handler(self, callback):
        """Register the lifecycle callback: handler(kind, generation, error=None)."""
        self._event_handler = callback

    def emit(self, kind: str, generation: int | None, error: BaseException | None = None):
        if self._event_handler is None:
            log.debug("Sink %s: dropping %s event (no handler)", self.id, kind)
            return
        self._event_handler(kind, generation, error)

    # ── Abstract methods (subclass must implement) ──

    async def play(self, stream, generation: int):
        """Start rendering *stream*, replacing anything already attached."""
        raise NotImplementedError

    async def pause(self) -> bool:
        raise NotImplementedError

    async def resume(self) -> bool:
        raise NotImplementedError

    async def destroy(self):
        """Stop playback and detach the current stream."""
        raise NotImplementedError

    def get_state(self) -> str:
        """Return "playing", "paused", or "stopped"."""
        if self.generation is None:
            return "stopped"
        return "paused" if self.paused else "playing"


def create_sink(player_type: str | None = None) -> PlaybackSink:
    """Build the sink selected by player.type."""
    from ..lib.config import cfg

    player_type = player_type or cfg("player", "type", default="mpv")
    if player_type == "mpv":
        from .mpv import MpvSink
        return MpvSink()
    raise ValueError(f"Unknown player type: {player_type}")
