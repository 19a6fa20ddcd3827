"""Logical LoS fields and the spelling variants each one is published under."""

from __future__ import annotations

from enum import Enum
from typing import Any, Collection, Mapping

from .utils import canonical_key


class LogicalField(str, Enum):
    TEMPERATURE = "temperature"
    RX_LIGHT = "rx_light"
    R2 = "r2"
    HEARTBEAT = "heartbeat"
    CONCENTRATION = "concentration"


# First entry of each list is the primary variant (used by the loose match).
FIELD_VARIANTS: dict[LogicalField, tuple[str, ...]] = {
    LogicalField.TEMPERATURE: (
        "los_temp",
        "LoS-Temp(c)",
        "LoS-Temp(C)",
        "LoS-Temp",
        "LoS Temp",
        "lostemp",
    ),
    LogicalField.RX_LIGHT: (
        "los_rx_light",
        "LoS-Rx Light",
        "LoS-RxLight",
        "LoS Rx Light",
        "losrxlight",
    ),
    LogicalField.R2: (
        "los_r2",
        "LoS- R2",
        "LoS-R2",
        "LoS - R2",
        "losr2",
    ),
    LogicalField.HEARTBEAT: (
        "los_heartbeat",
        "LoS-HeartBeat",
        "LoS- HeartBeat",
        "losheartbeat",
    ),
    LogicalField.CONCENTRATION: (
        "los_ppm",
        "LoS - PPM",
        "LoS- PPM",
        "LoS-PPM",
        "ppm",
        "losppm",
        "ppm_mlo",
    ),
}

SIMPLE_FIELDS = (
    LogicalField.TEMPERATURE,
    LogicalField.RX_LIGHT,
    LogicalField.R2,
    LogicalField.HEARTBEAT,
)


def canonical_index(payload: Mapping[str, Any]) -> dict[str, str]:
    """Map canonical key -> raw key; the first raw key in payload order wins."""

    index: dict[str, str] = {}
    for raw_key in payload:
        index.setdefault(canonical_key(raw_key), raw_key)
    return index


def primary_variant(field: LogicalField) -> str:
    return FIELD_VARIANTS[field][0]


def find_field(
    payload: Mapping[str, Any],
    field: LogicalField,
    *,
    loose: bool = False,
    index: dict[str, str] | None = None,
    claimed: Collection[str] = (),
) -> tuple[str, Any] | None:
    """Locate *field* in *payload* and return ``(raw_key, value)``.

    Variants are tried in table order, so the first listed spelling present in
    the payload wins regardless of where it sits in the payload. With *loose*,
    and only when no variant matched exactly, the first payload key whose
    canonical form contains (or is contained in) the primary variant's
    canonical form is accepted. Raw keys in *claimed* already belong to another
    field and are never loose-matched.
    """

    if index is None:
        index = canonical_index(payload)

    for variant in FIELD_VARIANTS[field]:
        raw_key = index.get(canonical_key(variant))
        if raw_key is not None:
            return raw_key, payload[raw_key]

    if not loose:
        return None

    primary = canonical_key(primary_variant(field))
    for canonical, raw_key in index.items():
        if not canonical or raw_key in claimed:
            continue
        if primary in canonical or canonical in primary:
            return raw_key, payload[raw_key]
    return None


def resolve_field(payload: Mapping[str, Any], field: LogicalField, *, loose: bool = False) -> Any:
    match = find_field(payload, field, loose=loose)
    return None if match is None else match[1]
