#!/usr/bin/env python3
# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
BeoSound 5c Room Radio (beo-radio)

Plays the queue continuously into one room and pauses while nobody is
listening.  Listeners announce themselves through the HTTP API; the radio
pauses when the last one leaves and resumes (or skips a stale stream) when
someone comes back.

Endpoints:
  GET  /status          — orchestrator snapshot
  GET  /queue           — queued references
  POST /command         — {"command": "skip" | "add" | "remove" | "shuffle", ...}
  POST /room/join       — {"client_id": ...}
  POST /room/leave      — {"client_id": ...}
  POST /room/heartbeat  — {"client_id": ...}

Port: 8780
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from aiohttp import web

from .lib.config import cfg, reload_config
from .lib.errors import ConfigurationError, RoomLookupError, RoomPermissionError
from .lib.presence import PresenceReporter
from .lib.watchdog import sd_notify, watchdog_loop
from .orchestrator import STREAM_MAX_AGE, Orchestrator, RetryPolicy
from .players.base import create_sink
from .room import RoomDirectory
from .sources import create_resolver
from .track_queue import TrackQueue

log = logging.getLogger("beo-radio")

RADIO_PORT = 8780
LISTENER_TIMEOUT = 120  # seconds without heartbeat before a listener is dropped
SWEEP_INTERVAL = 30


class RadioService:
    """Wires the orchestrator to its collaborators and serves the HTTP API."""

    def __init__(self, orchestrator: Orchestrator, port: int = RADIO_PORT,
                 listener_timeout: float = LISTENER_TIMEOUT):
        self.radio = orchestrator
        self.port = port
        self.listener_timeout = listener_timeout
        self._runner: web.AppRunner | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def queue(self) -> TrackQueue:
        return self.radio.queue

    # ── HTTP server ──

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/queue", self._handle_queue)
        app.router.add_post("/command", self._handle_command_route)
        app.router.add_options("/command", self._handle_cors)
        app.router.add_post("/room/join", self._handle_join)
        app.router.add_post("/room/leave", self._handle_leave)
        app.router.add_post("/room/heartbeat", self._handle_heartbeat)
        return app

    async def start(self, room_id: str):
        """Connect the radio, then start listening."""
        await self.radio.presence.start()
        await self.radio.initialize(room_id)

        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self.port)
        await site.start()
        log.info("HTTP API on port %d", self.port)

        self._tasks.append(asyncio.create_task(self._sweep_loop()))
        self._tasks.append(asyncio.create_task(
            watchdog_loop(status=lambda: self.radio.status()["state"])))

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await self.radio.close()
        self.queue.save()
        await self.radio.resolver.close()
        await self.radio.presence.stop()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        log.info("Radio stopped")

    async def run(self, room_id: str):
        """Convenience entry-point: start + wait for signal + stop."""
        try:
            await self.start(room_id)
        except (ConfigurationError, RoomLookupError, RoomPermissionError):
            await self.radio.presence.stop()
            raise
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            sd_notify("STOPPING=1")
            await self.stop()

    async def _sweep_loop(self):
        """Drop listeners that stopped sending heartbeats."""
        while True:
            await asyncio.sleep(SWEEP_INTERVAL)
            self.radio.rooms.sweep_stale(self.listener_timeout, keep=(self.radio.identity,))

    # ── CORS ──

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    async def _handle_cors(self, request):
        return web.Response(headers=self._cors_headers())

    def _error(self, message: str, status: int = 400):
        return web.json_response(
            {"status": "error", "message": message},
            status=status,
            headers=self._cors_headers(),
        )

    # ── Route handlers ──

    async def _handle_status(self, request):
        return web.json_response(self.radio.status(), headers=self._cors_headers())

    async def _handle_queue(self, request):
        return web.json_response({
            "tracks": self.queue.tracks,
            "upcoming": self.queue.upcoming,
            "shuffle": self.queue.shuffle,
        }, headers=self._cors_headers())

    async def _handle_command_route(self, request):
        try:
            data = await request.json()
        except ValueError:
            return self._error("Invalid JSON body")
        cmd = data.get("command", "")
        try:
            result = await self.handle_command(cmd, data)
        except Exception as e:
            log.exception("Command error")
            return self._error(str(e), status=500)
        if result is None:
            return self._error(f"Unknown command: {cmd}")
        resp = {"status": "ok", "command": cmd}
        resp.update(result)
        return web.json_response(resp, headers=self._cors_headers())

    async def handle_command(self, cmd: str, data: dict) -> dict | None:
        """Run a control command.  None for unknown commands."""
        if cmd == "skip":
            await self.radio.skip(data.get("reason"))
            return {}
        if cmd == "add":
            ref = data.get("ref", "")
            return {"added": self.queue.add(ref), "queue_length": len(self.queue)}
        if cmd == "remove":
            ref = data.get("ref", "")
            return {"removed": self.queue.remove(ref), "queue_length": len(self.queue)}
        if cmd == "shuffle":
            self.queue.set_shuffle(bool(data.get("enabled", not self.queue.shuffle)))
            return {"shuffle": self.queue.shuffle}
        return None

    async def _member_request(self, request):
        try:
            data = await request.json()
        except ValueError:
            return None, self._error("Invalid JSON body")
        client_id = data.get("client_id")
        if not client_id:
            return None, self._error("client_id is required")
        if client_id == self.radio.identity:
            return None, self._error("client_id is reserved", status=409)
        if self.radio.room is None:
            return None, self._error("radio is not connected", status=503)
        return client_id, None

    async def _handle_join(self, request):
        client_id, error = await self._member_request(request)
        if error:
            return error
        joined = self.radio.room.join(client_id)
        return web.json_response(
            {"status": "ok", "joined": joined, "room": self.radio.room.name},
            headers=self._cors_headers())

    async def _handle_leave(self, request):
        client_id, error = await self._member_request(request)
        if error:
            return error
        left = self.radio.room.leave(client_id)
        return web.json_response({"status": "ok", "left": left}, headers=self._cors_headers())

    async def _handle_heartbeat(self, request):
        client_id, error = await self._member_request(request)
        if error:
            return error
        if not self.radio.room.heartbeat(client_id):
            return self._error("unknown client", status=404)
        return web.json_response({"status": "ok"}, headers=self._cors_headers())


def build_service(room_id: str | None = None) -> tuple[RadioService, str | None]:
    """Build the radio service from config."""
    room_id = room_id or cfg("radio", "room")
    data_dir = cfg("radio", "data_dir", default=os.path.expanduser("~/.local/share/beoradio"))

    queue = TrackQueue(
        state_path=os.path.join(data_dir, "queue.json"),
        shuffle=cfg("radio", "shuffle", default=False),
    )
    queue.restore()
    playlist = cfg("radio", "playlist")
    if playlist:
        queue.load_playlist(playlist)

    retry_cfg = cfg("radio", "retry", default={}) or {}
    orchestrator = Orchestrator(
        rooms=RoomDirectory.from_config(cfg("rooms", default={})),
        queue=queue,
        resolver=create_resolver(data_dir),
        sink=create_sink(),
        presence=PresenceReporter(room=room_id or ""),
        identity=cfg("radio", "identity", default="beo-radio"),
        pause_on_empty=cfg("radio", "pause_on_empty", default=True),
        stream_max_age=cfg("radio", "stream_max_age", default=STREAM_MAX_AGE),
        retry=RetryPolicy(
            burst=retry_cfg.get("burst", 3),
            backoff=retry_cfg.get("backoff", 1.0),
            max_backoff=retry_cfg.get("max_backoff", 30.0),
        ),
    )
    service = RadioService(
        orchestrator,
        port=cfg("radio", "port", default=RADIO_PORT),
        listener_timeout=cfg("radio", "listener_timeout", default=LISTENER_TIMEOUT),
    )
    return service, room_id


def main(argv=None):
    parser = argparse.ArgumentParser(description="BeoSound 5c room radio")
    parser.add_argument("--config", help="path to config.json")
    parser.add_argument("--room", help="room id (overrides radio.room)")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    args = parser.parse_args(argv)

    if args.config:
        os.environ["BEORADIO_CONFIG"] = args.config
        reload_config()

    debug = args.debug or cfg("radio", "debug", default=False)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    service, room_id = build_service(args.room)
    try:
        asyncio.run(service.run(room_id))
    except (ConfigurationError, RoomLookupError, RoomPermissionError) as e:
        log.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
