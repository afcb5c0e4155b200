"""
HTTP stream provider.

Opens http(s) audio URLs — plain files on a web server as well as
Icecast/Shoutcast radio streams.  The response stays open and is handed to
the player as the track's stream; destroying the stream closes the
connection.

Credentials are opaque: extra request headers from config plus the
RADIO_HTTP_AUTH secret (sent as the Authorization header).
"""

import asyncio
import logging
import os
from urllib.parse import unquote, urlparse

import aiohttp

from ..lib.config import cfg
from .base import HttpStream, ResolvedTrack, TrackInfo, TrackProvider

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15  # seconds to connect and receive headers

# Servers that mislabel audio still get a chance if the URL looks like audio
AUDIO_CONTENT_PREFIXES = ("audio/", "application/ogg", "application/octet-stream")


def _title_from_url(url: str) -> str:
    path = urlparse(url).path.rstrip("/")
    name = unquote(path.rsplit("/", 1)[-1]) if path else ""
    if "." in name:
        name = name.rsplit(".", 1)[0]
    return name or urlparse(url).hostname or url


class HttpStreamProvider(TrackProvider):
    id = "http"

    def __init__(self, timeout: float | None = None, headers: dict | None = None):
        http_cfg = cfg("providers", "http", default={}) or {}
        self.timeout = timeout if timeout is not None else http_cfg.get("timeout", DEFAULT_TIMEOUT)
        self.headers = {
            "User-Agent": http_cfg.get("user_agent", "BeoRadio/1.0"),
        }
        auth = os.getenv("RADIO_HTTP_AUTH", "")
        if auth:
            self.headers["Authorization"] = auth
        if headers:
            self.headers.update(headers)
        self._session: aiohttp.ClientSession | None = None

    def handles(self, ref: str) -> bool:
        return ref.startswith(("http://", "https://"))

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # No total timeout: a radio stream is open for as long as it plays
            self._session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(
                    total=None, sock_connect=self.timeout, sock_read=None),
            )
        return self._session

    async def resolve(self, ref: str) -> ResolvedTrack | None:
        session = self._get_session()
        try:
            resp = await asyncio.wait_for(session.get(ref), timeout=self.timeout)
        except asyncio.TimeoutError:
            log.warning("Timed out opening %s", ref)
            return None
        except aiohttp.ClientError as e:
            log.warning("Cannot open %s: %s", ref, e)
            return None

        if resp.status >= 300:
            log.warning("HTTP %d for %s", resp.status, ref)
            resp.close()
            return None

        content_type = resp.headers.get("Content-Type", "").split(";")[0].strip().lower()
        if content_type and not content_type.startswith(AUDIO_CONTENT_PREFIXES):
            log.warning("Not an audio stream (%s): %s", content_type, ref)
            resp.close()
            return None

        title = resp.headers.get("icy-name") or _title_from_url(ref)
        source = urlparse(ref).hostname or self.id
        return ResolvedTrack(HttpStream(resp), TrackInfo(title=title, source=source, ref=ref))

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None
