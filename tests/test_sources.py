"""Tests for track providers and the provider resolver."""

import pytest
from aiohttp import web
from aiohttp import test_utils

from beoradio.lib import config
from beoradio.sources import ProviderResolver, create_resolver
from beoradio.sources.base import TrackProvider
from beoradio.sources.http import HttpStreamProvider, _title_from_url
from beoradio.sources.local import LocalFileProvider


async def read_all(stream) -> bytes:
    data = b""
    while True:
        chunk = await stream.read(4)
        if not chunk:
            return data
        data += chunk


# ═══════════════════════════════════════════════════════════════════
# Local files
# ═══════════════════════════════════════════════════════════════════


class TestLocalFileProvider:

    def test_handles(self):
        provider = LocalFileProvider()
        assert provider.handles("/music/a.mp3")
        assert provider.handles("file:///music/a.mp3")
        assert provider.handles("relative/a.mp3")
        assert not provider.handles("http://host/a.mp3")

    @pytest.mark.asyncio
    async def test_resolves_audio_file(self, tmp_path):
        song = tmp_path / "Blue Monday.flac"
        song.write_bytes(b"fLaC-data")
        track = await LocalFileProvider().resolve(str(song))

        assert track.title == "Blue Monday"
        assert track.source == "local"
        assert await read_all(track.stream) == b"fLaC-data"
        track.destroy()
        assert track.stream.closed
        assert await track.stream.read() == b""

    @pytest.mark.asyncio
    async def test_file_url_and_relative_root(self, tmp_path):
        (tmp_path / "my song.mp3").write_bytes(b"x")
        provider = LocalFileProvider(root=str(tmp_path))

        by_url = await provider.resolve((tmp_path / "my song.mp3").as_uri())
        relative = await provider.resolve("my song.mp3")
        assert by_url.title == relative.title == "my song"
        by_url.destroy()
        relative.destroy()

    @pytest.mark.asyncio
    async def test_missing_file_is_no_stream(self, tmp_path):
        assert await LocalFileProvider().resolve(str(tmp_path / "gone.mp3")) is None

    @pytest.mark.asyncio
    async def test_non_audio_file_is_no_stream(self, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("hello")
        assert await LocalFileProvider().resolve(str(notes)) is None


# ═══════════════════════════════════════════════════════════════════
# HTTP streams
# ═══════════════════════════════════════════════════════════════════


def make_app(seen_headers: list):
    async def song(request):
        seen_headers.append(dict(request.headers))
        return web.Response(body=b"ID3-audio", content_type="audio/mpeg")

    async def station(request):
        return web.Response(body=b"ogg", content_type="application/ogg",
                            headers={"icy-name": "Jazz FM"})

    async def page(request):
        return web.Response(text="<html></html>", content_type="text/html")

    app = web.Application()
    app.router.add_get("/music/Blue-Monday.mp3", song)
    app.router.add_get("/live", station)
    app.router.add_get("/index.html", page)
    return app


class TestHttpStreamProvider:

    def test_handles(self):
        provider = HttpStreamProvider()
        assert provider.handles("http://host/a.mp3")
        assert provider.handles("https://host/live")
        assert not provider.handles("/music/a.mp3")

    def test_config_values(self, monkeypatch):
        monkeypatch.setattr(config, "_config", {
            "providers": {"http": {"timeout": 3, "user_agent": "Lounge/2.0"}}})
        provider = HttpStreamProvider()
        assert provider.timeout == 3
        assert provider.headers["User-Agent"] == "Lounge/2.0"

    def test_null_config_section_uses_defaults(self, monkeypatch):
        monkeypatch.setattr(config, "_config", {"providers": {"http": None}})
        provider = HttpStreamProvider()
        assert provider.timeout == 15
        assert provider.headers["User-Agent"] == "BeoRadio/1.0"

    @pytest.mark.parametrize("url, title", [
        ("http://host/music/Some%20Song.mp3", "Some Song"),
        ("http://host/live/", "live"),
        ("http://radio.example/", "radio.example"),
    ])
    def test_title_from_url(self, url, title):
        assert _title_from_url(url) == title

    @pytest.mark.asyncio
    async def test_resolves_audio_response(self):
        seen = []
        async with test_utils.TestServer(make_app(seen)) as server:
            provider = HttpStreamProvider(timeout=5)
            track = await provider.resolve(str(server.make_url("/music/Blue-Monday.mp3")))

            assert track.title == "Blue-Monday"
            assert track.source == "127.0.0.1"
            assert await read_all(track.stream) == b"ID3-audio"
            track.destroy()
            await provider.close()

        assert seen[0]["User-Agent"] == "BeoRadio/1.0"
        assert "Authorization" not in seen[0]

    @pytest.mark.asyncio
    async def test_icy_name_is_title(self):
        async with test_utils.TestServer(make_app([])) as server:
            provider = HttpStreamProvider(timeout=5)
            track = await provider.resolve(str(server.make_url("/live")))
            assert track.title == "Jazz FM"
            track.destroy()
            await provider.close()

    @pytest.mark.asyncio
    async def test_sends_configured_credentials(self, monkeypatch):
        monkeypatch.setenv("RADIO_HTTP_AUTH", "Bearer secret")
        seen = []
        async with test_utils.TestServer(make_app(seen)) as server:
            provider = HttpStreamProvider(timeout=5, headers={"X-Station": "beo"})
            track = await provider.resolve(str(server.make_url("/music/Blue-Monday.mp3")))
            track.destroy()
            await provider.close()

        assert seen[0]["Authorization"] == "Bearer secret"
        assert seen[0]["X-Station"] == "beo"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/missing.mp3", "/index.html"])
    async def test_unplayable_response_is_no_stream(self, path):
        async with test_utils.TestServer(make_app([])) as server:
            provider = HttpStreamProvider(timeout=5)
            assert await provider.resolve(str(server.make_url(path))) is None
            await provider.close()

    @pytest.mark.asyncio
    async def test_connection_refused_is_no_stream(self, unused_tcp_port):
        provider = HttpStreamProvider(timeout=5)
        assert await provider.resolve(f"http://127.0.0.1:{unused_tcp_port}/a.mp3") is None
        await provider.close()


# ═══════════════════════════════════════════════════════════════════
# Resolver
# ═══════════════════════════════════════════════════════════════════


class StaticProvider(TrackProvider):
    def __init__(self, id, prefix):
        self.id = id
        self.prefix = prefix
        self.closed = False

    def handles(self, ref):
        return ref.startswith(self.prefix)

    async def resolve(self, ref):
        return self.id

    async def close(self):
        self.closed = True


class TestProviderResolver:

    @pytest.mark.asyncio
    async def test_first_matching_provider_wins(self):
        first = StaticProvider("first", "a")
        second = StaticProvider("second", "")
        resolver = ProviderResolver([first, second])

        assert resolver.get_instance("abc") is first
        assert await resolver.resolve("abc") == "first"
        assert await resolver.resolve("xyz") == "second"

    @pytest.mark.asyncio
    async def test_unknown_reference_is_no_stream(self):
        resolver = ProviderResolver([StaticProvider("only", "a")])
        assert resolver.get_instance("zzz") is None
        assert await resolver.resolve("zzz") is None

    @pytest.mark.asyncio
    async def test_close_closes_every_provider(self):
        providers = [StaticProvider("a", "a"), StaticProvider("b", "b")]
        await ProviderResolver(providers).close()
        assert all(p.closed for p in providers)

    def test_default_providers(self, tmp_path):
        resolver = create_resolver(str(tmp_path))
        assert [p.id for p in resolver.providers] == ["http", "local"]
        assert resolver.get_instance("https://host/live").id == "http"
        assert resolver.get_instance("song.mp3").id == "local"
