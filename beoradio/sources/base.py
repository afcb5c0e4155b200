# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
TrackProvider — shared plumbing for room radio track providers.

A provider turns a track reference (path, URL, ...) into a ResolvedTrack:
an open StreamHandle plus descriptive TrackInfo.  Returning None means
"no stream" — the orchestrator moves on to the next reference.

Subclass contract:

    class MyProvider(TrackProvider):
        id = "myprovider"

        def handles(self, ref) -> bool: ...
        async def resolve(self, ref) -> ResolvedTrack | None: ...

Optional overrides:
    close()   — release shared resources (HTTP sessions etc.)
"""

import asyncio
import logging
from dataclasses import dataclass

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class TrackInfo:
    """Descriptive metadata shown in logs and presence."""

    title: str
    source: str
    ref: str = ""

    def to_dict(self) -> dict:
        return {"title": self.title, "source": self.source, "ref": self.ref}


class StreamHandle:
    """A playable byte source for one track.

    read() returns b"" at end of stream.  destroy() releases whatever the
    stream holds open and may be called any number of times.
    """

    def __init__(self):
        self.closed = False

    async def read(self, n: int = CHUNK_SIZE) -> bytes:
        raise NotImplementedError

    def destroy(self):
        if self.closed:
            return
        self.closed = True
        self._release()

    def _release(self):
        """Release the underlying resource.  Called once."""


class FileStream(StreamHandle):
    """Stream backed by a local file, read in a worker thread."""

    def __init__(self, path):
        super().__init__()
        self.path = path
        self._file = open(path, "rb")

    async def read(self, n: int = CHUNK_SIZE) -> bytes:
        if self.closed:
            return b""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._file.read, n)

    def _release(self):
        self._file.close()


class HttpStream(StreamHandle):
    """Stream backed by an open aiohttp response."""

    def __init__(self, response):
        super().__init__()
        self._response = response

    async def read(self, n: int = CHUNK_SIZE) -> bytes:
        if self.closed:
            return b""
        return await self._response.content.read(n)

    def _release(self):
        self._response.close()


@dataclass
class ResolvedTrack:
    stream: StreamHandle
    info: TrackInfo

    @property
    def title(self) -> str:
        return self.info.title

    @property
    def source(self) -> str:
        return self.info.source

    def destroy(self):
        self.stream.destroy()


class TrackProvider:
    # ── Subclass must set this ──
    id: str = ""

    def handles(self, ref: str) -> bool:
        """True if this provider resolves references of *ref*'s type."""
        raise NotImplementedError

    async def resolve(self, ref: str) -> ResolvedTrack | None:
        """Open a stream for *ref*.  Return None when nothing is playable."""
        raise NotImplementedError

    async def close(self):
        """Release shared resources."""
