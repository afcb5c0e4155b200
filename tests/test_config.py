"""Tests for the JSON config loader."""

import json
import logging

import pytest

from beoradio.lib import config
from beoradio.lib.config import cfg, load_config, reload_config


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    def _write(data):
        path = tmp_path / "config.json"
        path.write_text(data if isinstance(data, str) else json.dumps(data))
        monkeypatch.setenv("BEORADIO_CONFIG", str(path))
        return reload_config()
    return _write


def test_explicit_path_wins(config_file):
    config_file({"radio": {"room": "lounge", "playlist": "x.m3u"}, "rooms": {"lounge": {}}})
    assert cfg("radio", "room") == "lounge"
    assert cfg("rooms") == {"lounge": {}}


def test_defaults(config_file):
    config_file({"device": "Kitchen", "radio": {"room": "lounge"}})
    assert cfg("device") == "Kitchen"
    assert cfg("radio", "shuffle", default=False) is False
    assert cfg("player", "type", default="mpv") == "mpv"
    assert cfg("device", "name", default="x") == "x"  # not a section
    assert cfg("missing", default={}) == {}


def test_cached_until_reload(config_file, tmp_path):
    config_file({"radio": {"room": "lounge"}})
    (tmp_path / "config.json").write_text(json.dumps({"radio": {"room": "attic"}}))
    assert cfg("radio", "room") == "lounge"
    reload_config()
    assert cfg("radio", "room") == "attic"


def test_invalid_json_falls_through(config_file, monkeypatch, caplog):
    monkeypatch.setattr(config, "_SEARCH_PATHS", [])
    with caplog.at_level(logging.ERROR, logger="beoradio.lib.config"):
        assert config_file("{broken") == {}
    assert "Invalid JSON" in caplog.text


def test_validation_warnings(config_file, caplog):
    with caplog.at_level(logging.WARNING, logger="beoradio.lib.config"):
        config_file({
            "radio": {"room": "attic"},
            "player": {"type": "vlc"},
            "presence": {"mode": "webhook"},
        })
    text = caplog.text
    assert "'attic' is not listed under 'rooms'" in text
    assert "no radio.playlist" in text
    assert "unknown player.type 'vlc'" in text
    assert "no presence.webhook_url" in text


def test_missing_room_is_error(config_file, caplog):
    with caplog.at_level(logging.ERROR, logger="beoradio.lib.config"):
        config_file({"radio": {}})
    assert "missing radio.room" in caplog.text


def test_shipped_default_config_is_valid(monkeypatch, caplog):
    monkeypatch.setattr(config, "_SEARCH_PATHS", config._SEARCH_PATHS[-1:])
    with caplog.at_level(logging.ERROR, logger="beoradio.lib.config"):
        data = reload_config()
    assert data["radio"]["room"] in data["rooms"]
    assert data["radio"]["stream_max_age"] == 7200
    assert "missing radio.room" not in caplog.text
    assert load_config() is data
