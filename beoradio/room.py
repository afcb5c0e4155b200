"""
Rooms — where the radio plays and who is listening.

A room keeps its live member set (identity -> last seen) and notifies
subscribers on every membership change.  Listeners join, leave and send
heartbeats through the radio's HTTP API; the radio itself joins with its own
identity and never counts itself as a listener.

Room definitions come from the "rooms" config section:

    "rooms": {"lounge": {"name": "Lounge", "joinable": true}}
"""

import logging
import time

from .lib.errors import RoomNotFound

log = logging.getLogger(__name__)


class Room:
    """One joinable destination and its members."""

    def __init__(self, id: str, name: str = "", joinable: bool = True):
        self.id = id
        self.name = name or id
        self.joinable = joinable
        self._members: dict[str, float] = {}
        self._subscribers: list = []

    @property
    def members(self) -> set[str]:
        return set(self._members)

    def __contains__(self, identity: str):
        return identity in self._members

    def subscribe(self, callback):
        """Call *callback(room)* on every membership change.  Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def _notify(self):
        for callback in list(self._subscribers):
            try:
                callback(self)
            except Exception:
                log.exception("Room %s: membership subscriber failed", self.id)

    def join(self, identity: str, now: float | None = None) -> bool:
        """Add *identity*.  Returns True if it was not a member yet."""
        is_new = identity not in self._members
        self._members[identity] = now if now is not None else time.time()
        if is_new:
            log.info("%s joined %s (%d members)", identity, self.name, len(self._members))
            self._notify()
        return is_new

    def leave(self, identity: str) -> bool:
        """Remove *identity*.  Returns True if it was a member."""
        if self._members.pop(identity, None) is None:
            return False
        log.info("%s left %s (%d members)", identity, self.name, len(self._members))
        self._notify()
        return True

    def heartbeat(self, identity: str, now: float | None = None) -> bool:
        """Refresh *identity*'s last-seen time.  False if it is not a member."""
        if identity not in self._members:
            return False
        self._members[identity] = now if now is not None else time.time()
        return True

    def stale_members(self, max_idle: float, now: float | None = None, keep=()) -> list[str]:
        now = now if now is not None else time.time()
        return [
            identity for identity, last_seen in self._members.items()
            if identity not in keep and now - last_seen > max_idle
        ]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "joinable": self.joinable,
            "members": sorted(self._members),
        }


class RoomDirectory:
    """Lookup of configured rooms by id."""

    def __init__(self, rooms: list[Room] | None = None):
        self._rooms: dict[str, Room] = {}
        for room in rooms or []:
            self.add(room)

    @classmethod
    def from_config(cls, rooms_cfg: dict | None) -> "RoomDirectory":
        rooms = []
        for room_id, room_cfg in (rooms_cfg or {}).items():
            room_cfg = room_cfg or {}
            rooms.append(Room(room_id, name=room_cfg.get("name", ""),
                              joinable=room_cfg.get("joinable", True)))
        return cls(rooms)

    def add(self, room: Room) -> Room:
        self._rooms[room.id] = room
        return room

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    async def fetch(self, room_id: str) -> Room:
        """Look up *room_id*.  Raises RoomNotFound for unknown ids."""
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def sweep_stale(self, max_idle: float, now: float | None = None, keep=()) -> list[tuple[str, str]]:
        """Drop members not seen for *max_idle* seconds (except *keep*)."""
        removed = []
        for room in self._rooms.values():
            for identity in room.stale_members(max_idle, now=now, keep=keep):
                log.info("Removing stale listener %s from %s", identity, room.name)
                room.leave(identity)
                removed.append((room.id, identity))
        return removed

    def __iter__(self):
        return iter(self._rooms.values())

    def __len__(self):
        return len(self._rooms)
