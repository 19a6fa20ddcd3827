"""MQTT input: subscribe to the LoS topics and feed the ingest pipeline."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from typing import Sequence
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from .pipeline import IngestPipeline

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883, "tls": 8883}
_TLS_SCHEMES = {"mqtts", "ssl", "tls"}


def parse_broker_url(url: str) -> tuple[str, int, bool]:
    """Split ``mqtt://host:port`` into ``(host, port, use_tls)``."""

    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"mqtt://{candidate}"
    parts = urlsplit(candidate)
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise ValueError(f"Unsupported MQTT URL scheme: {parts.scheme!r}")
    if not parts.hostname:
        raise ValueError(f"MQTT URL has no host: {url!r}")
    return parts.hostname, parts.port or _DEFAULT_PORTS[scheme], scheme in _TLS_SCHEMES


class MqttSubscriber:
    """paho-mqtt client running its network loop on a background thread.

    Messages are handed over to the asyncio loop the subscriber was created
    with; the pipeline itself always runs there.
    """

    def __init__(
        self,
        pipeline: IngestPipeline,
        loop: asyncio.AbstractEventLoop,
        broker_url: str,
        topics: Sequence[str],
        client_id: str = "los-relay",
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.loop = loop
        self.broker_url = broker_url
        self.topics = tuple(topics)
        self.client_id = client_id
        self.username = username
        self.password = password
        self.client: mqtt.Client | None = None

    def is_recognized(self, topic: str) -> bool:
        return any(mqtt.topic_matches_sub(topic_filter, topic) for topic_filter in self.topics)

    def connect(self) -> None:
        host, port, use_tls = parse_broker_url(self.broker_url)

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id, clean_session=True)
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        if self.username:
            self.client.username_pw_set(self.username, self.password)
        if use_tls:
            self.client.tls_set()

        logger.info("Connecting to MQTT broker %s:%s and subscribing to %s", host, port, ", ".join(self.topics))
        self.client.connect_async(host, port, keepalive=60)
        self.client.loop_start()

    def stop(self) -> None:
        if self.client is None:
            return
        self.client.disconnect()
        self.client.loop_stop()
        self.client = None

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("Failed to connect to MQTT broker: %s", reason_code)
            return
        logger.info("Connected to MQTT broker")
        for topic in self.topics:
            client.subscribe(topic, qos=0)
            logger.info("Subscribed to: %s", topic)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.warning("Unexpected MQTT disconnection (%s), will auto-reconnect", reason_code)

    def _on_message(self, client, userdata, msg):
        if msg.retain:
            logger.debug("Skipping retained message", extra={"topic": msg.topic})
            return
        if not self.is_recognized(msg.topic):
            logger.debug("Skipping message on unrecognized topic", extra={"topic": msg.topic})
            return

        future = asyncio.run_coroutine_threadsafe(
            self.pipeline.handle_message(msg.topic, msg.payload),
            self.loop,
        )
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Error processing MQTT message", exc_info=exc)
