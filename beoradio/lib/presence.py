"""
Presence reporting for the room radio.

Publishes a short human readable status ("► Song", "❙ ❙ Song",
"◼ Nothing to play") via webhook (HTTP POST), MQTT, or both, configurable
via presence.mode.  The default "log" mode just writes the status to the
service log.

Updates are fire-and-forget: update() schedules delivery and returns
immediately, delivery errors are logged and never raised.

Usage:
    presence = PresenceReporter(room="lounge")
    await presence.start()
    presence.update("► Song title")
    await presence.stop()
"""

import asyncio
import json
import os
import re
import logging

import aiohttp

from .config import cfg

logger = logging.getLogger(__name__)

# Topic structure: beoradio/{device_slug}/presence
TOPIC_PREFIX = "beoradio"

NOTHING_TO_PLAY = "◼ Nothing to play"


def _device_slug(name: str) -> str:
    """Convert device name to MQTT-safe slug: 'Living Room' -> 'living_room'.

    Strips characters that are illegal in MQTT topic segments (/, #, +)
    and replaces non-alphanumeric chars with underscores.
    """
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9_]", "_", slug)
    slug = re.sub(r"_+", "_", slug)
    slug = slug.strip("_")
    return slug or "default"


class PresenceReporter:
    """Fire-and-forget status sink for the radio."""

    def __init__(self, room: str = "", mode: str | None = None):
        self.mode = (mode or cfg("presence", "mode", default="log")).lower()  # log | webhook | mqtt | both
        self.webhook_url = cfg("presence", "webhook_url", default="")
        self.device_name = cfg("device", default="BeoRadio")
        self.device_slug = _device_slug(self.device_name)
        self.room = room

        # MQTT config (broker from JSON, credentials from env secrets)
        self.mqtt_broker = cfg("presence", "mqtt_broker", default="homeassistant.local")
        self.mqtt_port = int(cfg("presence", "mqtt_port", default=1883))
        self.mqtt_user = os.getenv("MQTT_USER", "")
        self.mqtt_password = os.getenv("MQTT_PASSWORD", "")
        self.mqtt_backoff = 1.0  # seconds, doubles per failed reconnect
        self.mqtt_max_backoff = 30.0

        self.topic_presence = f"{TOPIC_PREFIX}/{self.device_slug}/presence"
        self.topic_status = f"{TOPIC_PREFIX}/{self.device_slug}/status"

        self.current: str | None = None
        self._session: aiohttp.ClientSession | None = None
        self._mqtt_client = None
        self._mqtt_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self._running = False

    @property
    def _use_webhook(self) -> bool:
        return self.mode in ("webhook", "both")

    @property
    def _use_mqtt(self) -> bool:
        return self.mode in ("mqtt", "both")

    async def start(self):
        """Initialize transports."""
        self._running = True

        if self._use_webhook:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=2.0),
                headers={"User-Agent": "BeoRadio-Presence/1.0"},
            )
            logger.info("Presence webhook ready -> %s", self.webhook_url)

        if self._use_mqtt:
            self._mqtt_task = asyncio.create_task(self._mqtt_loop())
            logger.info("Presence MQTT starting -> %s:%d", self.mqtt_broker, self.mqtt_port)

    async def stop(self):
        """Clean shutdown: flush pending deliveries, close transports."""
        self._running = False

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        if self._mqtt_task:
            self._mqtt_task.cancel()
            try:
                await self._mqtt_task
            except asyncio.CancelledError:
                pass
            self._mqtt_task = None

        if self._session:
            await self._session.close()
            self._session = None

        logger.info("Presence stopped")

    def update(self, text: str):
        """Publish *text* as the current status.  Never blocks, never raises."""
        if text == self.current:
            return
        self.current = text
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(text))
        except RuntimeError:
            logger.info("Presence: %s", text)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, text: str):
        payload = {"device": self.device_name, "room": self.room, "status": text}
        if self.mode == "log":
            logger.info("Presence: %s", text)
            return

        tasks = []
        if self._use_webhook:
            tasks.append(self._send_webhook(payload))
        if self._use_mqtt:
            tasks.append(self._send_mqtt(payload))

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for r in results:
            if isinstance(r, Exception):
                logger.error("Presence send error: %s", r)

    # --- Webhook transport ---------------------------------------------------

    async def _send_webhook(self, payload: dict) -> bool:
        if not self._session:
            logger.warning("Presence webhook session not initialized")
            return False

        try:
            async with self._session.post(
                self.webhook_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=2.0),
                raise_for_status=True,
            ) as resp:
                logger.debug("Presence webhook sent: %s (HTTP %d)", payload["status"], resp.status)
                return True
        except asyncio.TimeoutError:
            logger.warning("Presence webhook timeout for %s", payload["status"])
        except aiohttp.ClientError as e:
            logger.warning("Presence webhook error: %s", e)
        return False

    # --- MQTT transport -------------------------------------------------------

    async def _mqtt_loop(self):
        """Connect to MQTT broker with auto-reconnect and exponential backoff."""
        try:
            import aiomqtt
        except ImportError:
            logger.error("aiomqtt not installed -- MQTT presence disabled. "
                         "Install with: pip install aiomqtt")
            return

        backoff = self.mqtt_backoff

        while self._running:
            try:
                will = aiomqtt.Will(
                    topic=self.topic_status,
                    payload=json.dumps({"status": "offline"}),
                    qos=1,
                    retain=True,
                )

                async with aiomqtt.Client(
                    hostname=self.mqtt_broker,
                    port=self.mqtt_port,
                    username=self.mqtt_user or None,
                    password=self.mqtt_password or None,
                    will=will,
                ) as client:
                    self._mqtt_client = client
                    backoff = self.mqtt_backoff

                    await client.publish(
                        self.topic_status,
                        json.dumps({"status": "online"}),
                        qos=1,
                        retain=True,
                    )
                    logger.info("MQTT connected to %s:%d", self.mqtt_broker, self.mqtt_port)

                    # Re-publish the last status after a reconnect
                    if self.current is not None:
                        await self._send_mqtt(
                            {"device": self.device_name, "room": self.room, "status": self.current})

                    # The message stream raises MqttError when the broker goes away
                    await client.subscribe(self.topic_status)
                    async for message in client.messages:
                        logger.debug("MQTT %s: %s", message.topic, message.payload)
                    raise ConnectionError("MQTT message stream ended")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._mqtt_client = None
                logger.warning("MQTT connection lost (%s), reconnecting in %.0fs", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self.mqtt_max_backoff)

        self._mqtt_client = None

    async def _send_mqtt(self, payload: dict) -> bool:
        if not self._mqtt_client:
            logger.warning("MQTT not connected, dropping presence: %s", payload["status"])
            return False

        try:
            await self._mqtt_client.publish(
                self.topic_presence,
                json.dumps(payload),
                qos=0,
                retain=True,
            )
            logger.debug("MQTT presence published: %s", payload["status"])
            return True
        except Exception as e:
            logger.warning("MQTT publish error: %s", e)
            return False
