"""
Shared configuration loader for the BeoSound 5c room radio.

Loads a single JSON config file per device.  Search order:
  1. $BEORADIO_CONFIG              (explicit path, e.g. --config)
  2. /etc/beoradio/config.json     (deployed)
  3. config.json                   (CWD — handy for local dev)
  4. ../config/default.json        (repo fallback)

Secrets (RADIO_HTTP_AUTH, MQTT_USER, etc.) stay in environment variables,
loaded from /etc/beoradio/secrets.env by systemd EnvironmentFile.

Usage:
    from beoradio.lib.config import cfg

    room_id       = cfg("radio", "room")
    pause_on_empty = cfg("radio", "pause_on_empty", default=True)
    rooms         = cfg("rooms", default={})  # returns the whole dict
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/beoradio/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]

PLAYER_TYPES = ("mpv",)
PRESENCE_MODES = ("log", "webhook", "mqtt", "both")


def _search_paths() -> list[str]:
    explicit = os.environ.get("BEORADIO_CONFIG")
    return ([explicit] if explicit else []) + _SEARCH_PATHS


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    radio = config.get("radio") or {}
    room_id = radio.get("room")
    if not room_id:
        logger.error("Config %s: missing radio.room — the radio has nowhere to play", path)
    elif room_id not in (config.get("rooms") or {}):
        logger.warning("Config %s: radio.room '%s' is not listed under 'rooms'", path, room_id)
    if not radio.get("playlist"):
        logger.warning("Config %s: no radio.playlist — queue starts from saved state only", path)
    player_type = (config.get("player") or {}).get("type", "mpv")
    if player_type not in PLAYER_TYPES:
        logger.warning("Config %s: unknown player.type '%s'", path, player_type)
    presence = config.get("presence") or {}
    mode = presence.get("mode", "log")
    if mode not in PRESENCE_MODES:
        logger.warning("Config %s: unknown presence.mode '%s'", path, mode)
    if mode in ("webhook", "both") and not presence.get("webhook_url"):
        logger.warning("Config %s: presence.mode '%s' but no presence.webhook_url", path, mode)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.warning("No config.json found — using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("device")                        → config["device"]
    cfg("radio", "room")                 → config["radio"]["room"]
    cfg("radio", "shuffle", default=False) → config["radio"]["shuffle"] or False
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
