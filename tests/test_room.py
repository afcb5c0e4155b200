"""Tests for rooms and the room directory."""

import pytest

from beoradio.lib.errors import RoomNotFound
from beoradio.room import Room, RoomDirectory


class TestRoom:

    def test_join_and_leave_notify(self):
        room = Room("lounge", name="Lounge")
        seen = []
        room.subscribe(lambda r: seen.append(sorted(r.members)))

        assert room.join("alice")
        assert not room.join("alice")  # already in, no notification
        assert room.leave("alice")
        assert not room.leave("alice")
        assert seen == [["alice"], []]

    def test_unsubscribe(self):
        room = Room("lounge")
        seen = []
        unsubscribe = room.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        room.join("alice")
        assert seen == []

    def test_failing_subscriber_does_not_break_others(self):
        room = Room("lounge")
        seen = []

        def broken(_):
            raise RuntimeError("boom")

        room.subscribe(broken)
        room.subscribe(seen.append)
        room.join("alice")
        assert seen == [room]

    def test_name_defaults_to_id(self):
        assert Room("kitchen").name == "kitchen"

    def test_heartbeat_only_for_members(self):
        room = Room("lounge")
        assert not room.heartbeat("alice")
        room.join("alice", now=0)
        assert room.heartbeat("alice", now=100)
        assert room.stale_members(60, now=150) == []
        assert room.stale_members(60, now=200) == ["alice"]

    def test_to_dict(self):
        room = Room("lounge", name="Lounge")
        room.join("bob")
        room.join("alice")
        assert room.to_dict() == {
            "id": "lounge",
            "name": "Lounge",
            "joinable": True,
            "members": ["alice", "bob"],
        }


class TestRoomDirectory:

    def test_from_config(self):
        rooms = RoomDirectory.from_config({
            "lounge": {"name": "Lounge"},
            "office": {"joinable": False},
            "hall": None,
        })
        assert len(rooms) == 3
        assert rooms.get("lounge").name == "Lounge"
        assert not rooms.get("office").joinable
        assert rooms.get("hall").joinable
        assert rooms.get("attic") is None

    @pytest.mark.asyncio
    async def test_fetch(self):
        rooms = RoomDirectory([Room("lounge")])
        assert (await rooms.fetch("lounge")).id == "lounge"
        with pytest.raises(RoomNotFound):
            await rooms.fetch("attic")

    def test_sweep_keeps_self(self):
        lounge = Room("lounge")
        rooms = RoomDirectory([lounge])
        lounge.join("beo-radio", now=0)
        lounge.join("alice", now=0)
        lounge.join("bob", now=100)

        removed = rooms.sweep_stale(120, now=150, keep=("beo-radio",))
        assert removed == [("lounge", "alice")]
        assert lounge.members == {"beo-radio", "bob"}
