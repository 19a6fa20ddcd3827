"""Message ingest: parse, normalize, relay, persist, alert."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Protocol

from .alerting import ThresholdEvaluator
from .normalizer import Reading, SerialResolver, normalize
from .ppm import PolicyTable

logger = logging.getLogger(__name__)

MESSAGE_EVENT = "mqtt_message"
READING_EVENT = "los_reading"


class ReadingSink(Protocol):
    async def insert(self, reading: Reading) -> int | None:
        ...


class EventEmitter(Protocol):
    async def emit(self, event: str, data: Any) -> None:
        ...


@dataclass(frozen=True)
class IngestResult:
    accepted: bool
    reason: str | None = None
    reading: Reading | None = None
    reading_id: int | None = None
    alerted: bool = False


def parse_document(text: str) -> dict[str, Any] | None:
    """Decode a JSON object; anything else is treated as opaque text."""

    try:
        document = json.loads(text)
    except ValueError:
        return None
    return document if isinstance(document, dict) else None


def extract_params(document: dict[str, Any]) -> dict[str, Any]:
    params = document.get("params")
    return params if isinstance(params, dict) else document


class _DeviceLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class IngestPipeline:
    def __init__(
        self,
        store: ReadingSink,
        emitter: EventEmitter,
        evaluator: ThresholdEvaluator,
        serial_resolver: SerialResolver | None = None,
        policies: PolicyTable | None = None,
    ) -> None:
        self.store = store
        self.emitter = emitter
        self.evaluator = evaluator
        self.serial_resolver = serial_resolver
        self.policies = policies
        # only devices with a write in flight have an entry
        self._device_locks: dict[str, _DeviceLock] = {}

    @asynccontextmanager
    async def _device_lock(self, key: str) -> AsyncIterator[None]:
        """Serialize writes per device; the entry is dropped with its last user."""

        entry = self._device_locks.get(key)
        if entry is None:
            entry = self._device_locks[key] = _DeviceLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._device_locks[key]

    async def handle_message(self, topic: str, raw: bytes | str, retained: bool = False) -> IngestResult:
        if retained:
            logger.debug("Ignoring retained message", extra={"topic": topic})
            return IngestResult(accepted=False, reason="retained")

        received_at = datetime.now(timezone.utc)
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        document = parse_document(text)

        await self.emitter.emit(
            MESSAGE_EVENT,
            {
                "topic": topic,
                "payload": document if document is not None else text,
                "raw": text,
                "received_at": received_at.isoformat(),
            },
        )

        if document is None:
            logger.info("Payload is not a JSON object; relayed only", extra={"topic": topic})
            return IngestResult(accepted=False, reason="malformed")

        return await self.handle_document(topic, document, received_at)

    async def handle_document(
        self,
        topic: str,
        document: dict[str, Any],
        received_at: datetime | None = None,
    ) -> IngestResult:
        reading = normalize(
            extract_params(document),
            topic,
            serial_resolver=self.serial_resolver,
            received_at=received_at,
            policies=self.policies,
        )
        await self.emitter.emit(READING_EVENT, reading.as_dict())

        reading_id = None
        if reading.has_values():
            async with self._device_lock(reading.device_serial or topic):
                reading_id = await self.store.insert(reading)
            if reading_id is None:
                logger.warning(
                    "DB insert returned no id (see previous error)",
                    extra={"topic": topic, "serial_number": reading.device_serial},
                )
        else:
            logger.debug("No LoS fields in payload; not persisted", extra={"topic": topic})

        alerted = await self.evaluator.evaluate(reading.device_serial, reading.concentration, topic=topic)
        return IngestResult(accepted=True, reading=reading, reading_id=reading_id, alerted=alerted)
