from __future__ import annotations

import asyncio

import pytest

from beoradio.lib import config
from beoradio.orchestrator import Orchestrator, RetryPolicy
from beoradio.players.base import ERROR, FINISH, START, PlaybackSink
from beoradio.room import Room, RoomDirectory
from beoradio.sources.base import ResolvedTrack, StreamHandle, TrackInfo
from beoradio.track_queue import TrackQueue


@pytest.fixture(autouse=True)
def _empty_config(monkeypatch):
    """Never pick up a config.json from the machine running the tests."""
    monkeypatch.setattr(config, "_config", {})
    monkeypatch.delenv("BEORADIO_CONFIG", raising=False)
    monkeypatch.delenv("RADIO_HTTP_AUTH", raising=False)


# ═══════════════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════════════


class FakeStream(StreamHandle):
    def __init__(self, data: bytes = b"audio"):
        super().__init__()
        self._data = data

    async def read(self, n: int = 65536) -> bytes:
        if self.closed:
            return b""
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk


class FakeSink(PlaybackSink):
    """Records every call; lets tests fire lifecycle events."""

    id = "fake"
    name = "Fake"

    def __init__(self):
        super().__init__()
        self.calls: list[tuple] = []
        self.played: list[StreamHandle] = []
        self.attached: StreamHandle | None = None
        self.overlaps = 0  # play() while a stream was still attached

    async def play(self, stream, generation):
        if self.attached is not None:
            self.overlaps += 1
        self.attached = stream
        self.generation = generation
        self.paused = False
        self.played.append(stream)
        self.calls.append(("play", generation))

    async def pause(self):
        if self.paused or self.generation is None:
            return False
        self.paused = True
        self.calls.append(("pause",))
        return True

    async def resume(self):
        if not self.paused or self.generation is None:
            return False
        self.paused = False
        self.calls.append(("resume",))
        return True

    async def destroy(self):
        self.attached = None
        self.generation = None
        self.paused = False
        self.calls.append(("destroy",))

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    # ── Event helpers ──

    def start(self, generation=None):
        self.emit(START, self.generation if generation is None else generation)

    def finish(self, generation=None):
        self.emit(FINISH, self.generation if generation is None else generation)

    def fail(self, error, generation=None):
        self.emit(ERROR, self.generation if generation is None else generation, error)


class FakeResolver:
    """Resolves any reference to a FakeStream.

    outcomes maps a reference to a list of per-call outcomes, consumed in
    order: None (no stream), an exception instance (raised), an
    asyncio.Event (wait for it, then succeed) or "ok".  Once the list is
    used up every call succeeds.
    """

    def __init__(self, outcomes: dict | None = None):
        self.outcomes = {ref: list(values) for ref, values in (outcomes or {}).items()}
        self.calls: list[str] = []
        self.streams: dict[str, list[FakeStream]] = {}
        self.closed = False

    async def resolve(self, ref):
        self.calls.append(ref)
        pending = self.outcomes.get(ref)
        outcome = pending.pop(0) if pending else "ok"
        if isinstance(outcome, asyncio.Event):
            await outcome.wait()
        elif isinstance(outcome, Exception):
            raise outcome
        elif outcome is None:
            return None
        stream = FakeStream()
        self.streams.setdefault(ref, []).append(stream)
        return ResolvedTrack(stream, TrackInfo(title=ref, source="fake", ref=ref))

    async def close(self):
        self.closed = True


class FakePresence:
    def __init__(self):
        self.updates: list[str] = []
        self.current: str | None = None
        self.started = False

    def update(self, text):
        self.updates.append(text)
        self.current = text

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


async def settle(radio: Orchestrator, rounds: int = 50):
    """Let the consumer loop and resolution tasks run until quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)
        await radio._events.join()


# ═══════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════


@pytest.fixture
def room():
    return Room("lounge", name="Lounge")


@pytest.fixture
def rooms(room):
    return RoomDirectory([room, Room("locked", name="Locked", joinable=False)])


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def presence():
    return FakePresence()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def make_radio(rooms, sink, presence, clock):
    def _make(tracks=("A", "B"), outcomes=None, **kwargs):
        queue = TrackQueue()
        queue.extend(tracks)
        kwargs.setdefault("retry", RetryPolicy(burst=100, backoff=0))
        return Orchestrator(rooms, queue, FakeResolver(outcomes), sink, presence,
                            clock=clock, **kwargs)
    return _make
