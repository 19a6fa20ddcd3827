"""Turn one raw LoS payload into a typed :class:`Reading`."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from .fields import SIMPLE_FIELDS, LogicalField, canonical_index, find_field
from .ppm import PolicyTable, resolve_concentration
from .utils import canonical_key, to_number

SerialResolver = Callable[[str], Optional[str]]

_SERIAL_KEYS = ("serial_number", "serial", "serialNumber")
_TIMESTAMP_KEYS = ("timestamp", "ts", "time", "epoch")

# Epoch values above this are taken to be milliseconds.
_EPOCH_MS_CUTOFF = 10**11

_DEFAULT_POLICIES = PolicyTable()


@dataclass(frozen=True)
class Reading:
    origin_topic: str
    device_serial: str | None
    temperature: float | None
    rx_light: float | None
    r2: float | None
    heartbeat: float | None
    concentration: float | None
    recorded_at: datetime

    def values(self) -> dict[str, float | None]:
        return {field.value: getattr(self, field.value) for field in LogicalField}

    def has_values(self) -> bool:
        return any(value is not None for value in self.values().values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "topic": self.origin_topic,
            "serial_number": self.device_serial,
            **self.values(),
            "recorded_at": self.recorded_at.isoformat(),
        }


def _embedded_serial(payload: Mapping[str, Any], index: dict[str, str]) -> str | None:
    for key in _SERIAL_KEYS:
        raw_key = index.get(canonical_key(key))
        if raw_key is None:
            continue
        value = payload[raw_key]
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _embedded_timestamp(payload: Mapping[str, Any], index: dict[str, str]) -> datetime | None:
    for key in _TIMESTAMP_KEYS:
        raw_key = index.get(canonical_key(key))
        if raw_key is None:
            continue
        epoch = to_number(payload[raw_key])
        if epoch is None or epoch < 0:
            continue
        if epoch > _EPOCH_MS_CUTOFF:
            epoch /= 1000.0
        try:
            return datetime.fromtimestamp(epoch, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            continue
    return None


def resolve_serial(
    payload: Mapping[str, Any],
    origin_topic: str,
    serial_resolver: SerialResolver | None = None,
    index: dict[str, str] | None = None,
) -> str | None:
    """Topic mapping first; the payload's own serial only when the topic is unmapped."""

    if serial_resolver is not None:
        serial = serial_resolver(origin_topic)
        if serial:
            return serial
    if index is None:
        index = canonical_index(payload)
    return _embedded_serial(payload, index)


def _reserved_keys(index: dict[str, str]) -> set[str]:
    reserved = {canonical_key(key) for key in _SERIAL_KEYS + _TIMESTAMP_KEYS}
    return {raw_key for canonical, raw_key in index.items() if canonical in reserved or "ppm" in canonical}


def _simple_values(payload: Mapping[str, Any], index: dict[str, str]) -> dict[str, float | None]:
    """Exact spellings claim their keys first; loose matches only see unclaimed keys.

    A raw key feeds at most one field, so a short key such as ``LoS`` cannot
    fill every field at once.
    """

    claimed = _reserved_keys(index)
    matches: dict[LogicalField, tuple[str, Any]] = {}
    for loose in (False, True):
        for field in SIMPLE_FIELDS:
            if field in matches:
                continue
            match = find_field(payload, field, loose=loose, index=index, claimed=claimed)
            if match is not None:
                matches[field] = match
                claimed.add(match[0])

    return {
        field.value: to_number(matches[field][1]) if field in matches else None
        for field in SIMPLE_FIELDS
    }


def normalize(
    payload: Mapping[str, Any],
    origin_topic: str,
    serial_resolver: SerialResolver | None = None,
    received_at: datetime | None = None,
    policies: PolicyTable | None = None,
) -> Reading:
    """Build a :class:`Reading` from *payload*.

    Pure apart from reading the clock when neither the payload nor the caller
    supplies a timestamp. Never raises on payload content: anything missing or
    unparseable ends up as ``None``.
    """

    index = canonical_index(payload)
    device_serial = resolve_serial(payload, origin_topic, serial_resolver, index)

    values = _simple_values(payload, index)

    policy = (policies if policies is not None else _DEFAULT_POLICIES).policy_for(device_serial)
    values[LogicalField.CONCENTRATION.value] = resolve_concentration(payload, policy)

    recorded_at = _embedded_timestamp(payload, index) or received_at or datetime.now(timezone.utc)

    return Reading(
        origin_topic=origin_topic,
        device_serial=device_serial,
        recorded_at=recorded_at,
        **values,
    )
