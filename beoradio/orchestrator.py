# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Orchestrator — the room radio's playback state machine.

Pulls references from the queue, resolves them through the providers, hands
the stream to the sink and advances whenever a track finishes, fails, or is
skipped.  Listener presence drives power management: with nobody in the room
playback pauses (pause_on_empty), and when someone comes back it resumes —
or skips the track if the paused stream has gone stale.

Every input (sink events, membership changes, queue changes, resolution
results, retry timers, skips) is posted to one event queue and handled by a
single consumer task, the only writer of orchestrator state.  Each advance
bumps a generation tag; events and resolutions carrying an older tag are
dropped.

    radio = Orchestrator(rooms, queue, resolver, sink, presence)
    await radio.initialize("lounge")
    ...
    await radio.skip()
    await radio.close()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum

from .lib.errors import ConfigurationError, RoomLookupError, RoomNotFound, RoomPermissionError
from .lib.presence import NOTHING_TO_PLAY
from .players.base import ERROR, FINISH, START
from .sources.base import ResolvedTrack

log = logging.getLogger(__name__)

STREAM_MAX_AGE = 7200  # seconds — TWO HOURS

PLAYING_ICON = "►"
PAUSED_ICON = "❙ ❙"

# Internal event kinds (sink kinds START/FINISH/ERROR come from players.base)
MEMBERS = "members"
SKIP = "skip"
ADVANCE = "advance"
RESOLVED = "resolved"
QUEUE = "queue"


class RadioState(str, Enum):
    IDLE = "idle"              # not connected to a room
    CONNECTING = "connecting"
    PLAYING = "playing"
    PAUSED = "paused"
    ADVANCING = "advancing"    # resolving the next track (or cooling down)
    WAITING = "waiting"        # connected, queue empty
    CLOSED = "closed"


@dataclass
class RadioEvent:
    kind: str
    generation: int | None = None
    track: ResolvedTrack | None = None
    error: BaseException | None = None
    reason: str | None = None


class RetryPolicy:
    """Cooldown for consecutive failed tracks.

    The first *burst* failures in a row advance immediately; after that
    each attempt waits *backoff* seconds, doubling up to *max_backoff*.
    """

    def __init__(self, burst: int = 3, backoff: float = 1.0, max_backoff: float = 30.0):
        self.burst = burst
        self.backoff = backoff
        self.max_backoff = max_backoff

    def delay(self, failures: int) -> float:
        if failures < self.burst:
            return 0.0
        return min(self.backoff * 2 ** (failures - self.burst), self.max_backoff)


class Orchestrator:
    def __init__(self, rooms, queue, resolver, sink, presence, *,
                 identity: str = "beo-radio",
                 pause_on_empty: bool = True,
                 stream_max_age: float = STREAM_MAX_AGE,
                 retry: RetryPolicy | None = None,
                 clock=time.monotonic):
        self.rooms = rooms
        self.queue = queue
        self.resolver = resolver
        self.sink = sink
        self.presence = presence
        self.identity = identity
        self.pause_on_empty = pause_on_empty
        self.stream_max_age = stream_max_age
        self.retry = retry or RetryPolicy()
        self._clock = clock

        self.state = RadioState.IDLE
        self.room = None
        self.current_track: ResolvedTrack | None = None
        self.listener_count = 0
        self.paused_since: float | None = None
        self.connection_active = False

        self._generation = 0
        self._failures = 0
        self._events: asyncio.Queue = asyncio.Queue()
        self._consumer_task: asyncio.Task | None = None
        self._resolve_task: asyncio.Task | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self._unsubscribe_room = None
        self._unsubscribe_queue = None

    # ── Connection ──

    async def initialize(self, room_id: str | None):
        """Join *room_id* and start the playback loop.

        Raises ConfigurationError, RoomLookupError or RoomPermissionError;
        anything that goes wrong with individual tracks later is handled
        internally.
        """
        if not room_id:
            raise ConfigurationError("radio.room is required in the radio config!")
        if self.state != RadioState.IDLE:
            raise RuntimeError(f"Radio already initialized (state {self.state.value})")

        self.presence.update(NOTHING_TO_PLAY)
        self.state = RadioState.CONNECTING

        try:
            room = await self.rooms.fetch(room_id)
        except RoomNotFound as e:
            self.state = RadioState.IDLE
            raise RoomLookupError(
                f"The room I tried to join ({room_id}) does not exist. "
                "Please check radio.room in your config.") from e
        except Exception as e:
            self.state = RadioState.IDLE
            raise RoomLookupError(
                "Something went wrong when trying to look for the room I was supposed to join.") from e

        if not room.joinable:
            self.state = RadioState.IDLE
            raise RoomPermissionError("I don't have enough permissions to join the configured room!")

        self._join(room)

    def _join(self, room):
        log.info("Joined %s.", room.name)
        self.room = room
        room.join(self.identity)
        self.connection_active = True
        self._unsubscribe_room = room.subscribe(self.notify_members_changed)
        self._unsubscribe_queue = self.queue.on_change(self._on_queue_change)
        self.sink.set_event_handler(self._on_sink_event)
        self._update_listeners()

        self._consumer_task = asyncio.create_task(self._run())
        self._post(RadioEvent(ADVANCE))

    async def close(self):
        """Stop playback, drop pending work and leave the room."""
        if self.state == RadioState.CLOSED:
            return
        self.state = RadioState.CLOSED
        self._generation += 1
        self._cancel_retry()

        for task in (self._consumer_task, self._resolve_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._consumer_task = None
        self._resolve_task = None

        # Resolutions posted before shutdown still hold an open stream
        while not self._events.empty():
            event = self._events.get_nowait()
            self._events.task_done()
            if event.track is not None:
                event.track.destroy()

        await self._release_current()

        if self._unsubscribe_queue:
            self._unsubscribe_queue()
            self._unsubscribe_queue = None
        if self._unsubscribe_room:
            self._unsubscribe_room()
            self._unsubscribe_room = None
        if self.room:
            self.room.leave(self.identity)
            log.info("Left %s.", self.room.name)
        self.connection_active = False
        self.listener_count = 0

    # ── Inputs (may be called from any callback; only enqueue) ──

    def _post(self, event: RadioEvent):
        if self.state == RadioState.CLOSED:
            return
        self._events.put_nowait(event)

    def _on_sink_event(self, kind: str, generation: int | None, error: BaseException | None = None):
        self._post(RadioEvent(kind, generation, error=error))

    def _on_queue_change(self):
        self._post(RadioEvent(QUEUE))

    def notify_members_changed(self, *_):
        """Membership of the room changed — recompute listeners."""
        self._post(RadioEvent(MEMBERS))

    async def skip(self, reason: str | None = None):
        """Skip the current track right away."""
        if self.current_track is not None:
            # Release the stream now; the consumer does the rest
            self.current_track.stream.destroy()
        self._post(RadioEvent(SKIP, reason=reason))

    # ── Consumer loop ──

    async def _run(self):
        while True:
            event = await self._events.get()
            try:
                await self._handle(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Error handling %s event", event.kind)
            finally:
                self._events.task_done()

    async def _handle(self, event: RadioEvent):
        kind = event.kind
        if kind == MEMBERS:
            self._update_listeners()
            await self._update_playback_status()
        elif kind == START:
            if self._is_stale(event):
                return
            self._failures = 0
            track = self.current_track
            log.info("Playing (%s): %s for %d user(s) in %s.",
                     track.source, track.title, self.listener_count, self.room.name)
        elif kind == FINISH:
            if self._is_stale(event):
                return
            await self._advance()
        elif kind == ERROR:
            if self._is_stale(event):
                return
            log.error("Playback error: %s", event.error)
            await self._fail()
        elif kind == SKIP:
            await self._skip(event.reason)
        elif kind == ADVANCE:
            if event.generation is not None and event.generation != self._generation:
                return
            await self._advance()
        elif kind == RESOLVED:
            await self._install(event)
        elif kind == QUEUE:
            if self.state == RadioState.WAITING:
                await self._advance()

    def _is_stale(self, event: RadioEvent) -> bool:
        stale = self.current_track is None or event.generation != self._generation
        if stale:
            log.debug("Ignoring stale %s event (generation %s, current %d)",
                      event.kind, event.generation, self._generation)
        return stale

    # ── Advancing ──

    async def _release_current(self):
        track = self.current_track
        self.current_track = None
        self.paused_since = None
        if track is not None:
            track.destroy()
            await self.sink.destroy()

    def _cancel_retry(self):
        if self._retry_handle:
            self._retry_handle.cancel()
            self._retry_handle = None

    async def _advance(self):
        """Drop the current track and start resolving the next one."""
        self._generation += 1
        self._cancel_retry()
        await self._release_current()
        self.state = RadioState.ADVANCING

        ref = self.queue.get_next()
        if ref is None:
            self.state = RadioState.WAITING
            log.info("Queue is empty, waiting for tracks.")
            self.presence.update(NOTHING_TO_PLAY)
            return

        self._resolve_task = asyncio.create_task(self._resolve(ref, self._generation))

    async def _resolve(self, ref: str, generation: int):
        try:
            track = await self.resolver.resolve(ref)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Provider failed for %s: %s", ref, e)
            track = None
        if self.state == RadioState.CLOSED:
            if track is not None:
                track.destroy()
            return
        self._post(RadioEvent(RESOLVED, generation, track=track, reason=ref))

    async def _install(self, event: RadioEvent):
        track = event.track
        if event.generation != self._generation:
            if track is not None:
                log.debug("Discarding stale resolution of %s", event.reason)
                track.destroy()
            return

        # A provider found no stream: move on to the next reference
        if track is None:
            log.debug("No stream for %s", event.reason)
            await self._fail()
            return

        self.current_track = track
        self.state = RadioState.PLAYING
        await self.sink.play(track.stream, self._generation)

        if self.listener_count == 0 and self.pause_on_empty:
            await self._pause()
        if self.paused_since is None:
            self._update_presence_with_track()

    async def _fail(self):
        """Count a failed track and advance, cooling down after a burst of failures."""
        self._failures += 1
        delay = self.retry.delay(self._failures)
        if delay <= 0:
            await self._advance()
            return

        self._generation += 1
        self._cancel_retry()
        await self._release_current()
        self.state = RadioState.ADVANCING
        log.warning("%d tracks failed in a row, trying the next one in %.0fs",
                    self._failures, delay)
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(
            delay, self._post, RadioEvent(ADVANCE, self._generation))

    async def _skip(self, reason: str | None = None):
        track = self.current_track
        if reason:
            log.info(reason)
        elif track is not None:
            log.info("(%s): %s has been skipped.", track.source, track.title)
        else:
            log.info("Skipping pending track.")
        await self._advance()

    # ── Listeners & power management ──

    def _update_listeners(self):
        members = self.room.members if self.room else set()
        # Self does not count
        self.listener_count = sum(1 for m in members if m != self.identity)

    async def _update_playback_status(self):
        if self.current_track is None:
            return
        if self.listener_count > 0:
            await self._resume()
        else:
            await self._pause()

    async def _pause(self):
        if self.paused_since is not None or not self.pause_on_empty:
            return
        if not await self.sink.pause():
            log.warning("Sink %s did not pause", self.sink.id)
            return
        self.paused_since = self._clock()
        self.state = RadioState.PAUSED
        log.info("Music has been paused because nobody is in my room.")
        self._update_presence_with_track()

    async def _resume(self):
        if self.paused_since is None:
            return
        if self.is_stream_expired():
            await self._skip("Stream has expired, skipping...")
            return
        if not await self.sink.resume():
            log.warning("Sink %s did not resume", self.sink.id)
            return
        self.paused_since = None
        self.state = RadioState.PLAYING
        log.info("Music has been resumed.")
        self._update_presence_with_track()

    def is_stream_expired(self) -> bool:
        if self.paused_since is None:
            return False
        return self._clock() - self.paused_since > self.stream_max_age

    def _update_presence_with_track(self):
        if self.current_track is None:
            self.presence.update(NOTHING_TO_PLAY)
            return
        icon = PAUSED_ICON if self.paused_since is not None else PLAYING_ICON
        self.presence.update(f"{icon} {self.current_track.title}")

    # ── Status ──

    def status(self) -> dict:
        track = self.current_track
        paused_for = None
        if self.paused_since is not None:
            paused_for = round(self._clock() - self.paused_since, 1)
        return {
            "state": self.state.value,
            "room": self.room.id if self.room else None,
            "connected": self.connection_active,
            "listeners": self.listener_count,
            "pause_on_empty": self.pause_on_empty,
            "track": track.info.to_dict() if track else None,
            "paused_for": paused_for,
            "generation": self._generation,
            "consecutive_failures": self._failures,
            "queue_length": len(self.queue),
            "presence": self.presence.current,
        }
