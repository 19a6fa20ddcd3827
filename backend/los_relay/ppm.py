"""Reconstruction of split PPM readings.

Some stations cannot put a decimal on the wire, so they publish the gas
concentration as two keys: the integer magnitude (``PPM_INT``,
``PPM-M-LO-Int`` ...) and the digits after the decimal point (``PPM_DEC``).
The decimal key is not a quantity of its own; its digits are appended after
the point of the integer part, and a lone digit counts as hundredths
(``12`` + ``5`` -> ``12.05``, ``12`` + ``50`` -> ``12.5``).

Which stations get the fraction at all is a static per-device decision, see
:class:`PolicyTable`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping

from .fields import canonical_index
from .utils import canonical_key, to_number


class MergePolicy(str, Enum):
    INTEGER_ONLY = "integer_only"
    INTEGER_PLUS_FRACTION = "integer_plus_fraction"


class PolicyTable:
    """Device serial -> :class:`MergePolicy`, everything else gets the default."""

    def __init__(
        self,
        policies: Mapping[str, MergePolicy] | None = None,
        default: MergePolicy = MergePolicy.INTEGER_PLUS_FRACTION,
    ) -> None:
        self.default = default
        self._policies = {canonical_key(serial): MergePolicy(policy) for serial, policy in (policies or {}).items()}

    @classmethod
    def integer_only(cls, serials: Iterable[str]) -> "PolicyTable":
        return cls({serial: MergePolicy.INTEGER_ONLY for serial in serials if serial})

    def policy_for(self, serial: str | None) -> MergePolicy:
        if not serial:
            return self.default
        return self._policies.get(canonical_key(serial), self.default)

    def __len__(self) -> int:
        return len(self._policies)


@dataclass(frozen=True)
class PpmParts:
    integer_part: float | None = None
    decimal_part: float | None = None


def _is_integer_key(canonical: str) -> bool:
    # "mlo" alone marks the integer key of PPM-M-LO stations; their decimal key also carries it.
    if "ppm" not in canonical:
        return False
    return "int" in canonical or ("mlo" in canonical and "dec" not in canonical)


def _is_decimal_key(canonical: str) -> bool:
    return "ppm" in canonical and ("dec" in canonical or "decimal" in canonical)


def detect_ppm_parts(payload: Mapping[str, Any]) -> PpmParts:
    """Find the integer and decimal PPM keys in *payload*.

    Keys are visited in ascending canonical order. When several keys qualify
    for the same role the last one visited wins, except for bare ``ppm`` keys,
    which only stand in for the integer part while none has been seen.
    Values that do not coerce to a number are skipped.
    """

    index = canonical_index(payload)
    integer_part: float | None = None
    decimal_part: float | None = None

    for canonical in sorted(index):
        if "ppm" not in canonical:
            continue
        number = to_number(payload[index[canonical]])
        if number is None:
            continue
        if _is_integer_key(canonical):
            integer_part = number
        elif _is_decimal_key(canonical):
            decimal_part = number
        elif integer_part is None:
            integer_part = number

    return PpmParts(integer_part=integer_part, decimal_part=decimal_part)


def _fraction_digits(value: float) -> str:
    magnitude = abs(value)
    if magnitude.is_integer():
        text = str(int(magnitude))
    else:
        text = format(Decimal(repr(magnitude)), "f")
    return "".join(ch for ch in text if ch.isdigit())


def merge_int_and_dec(int_val: Any, dec_val: Any) -> float | None:
    integer_part = to_number(int_val)
    if integer_part is None:
        return None

    decimal_part = to_number(dec_val)
    if decimal_part is None:
        return integer_part

    digits = _fraction_digits(decimal_part)
    if not digits:
        return integer_part
    if len(digits) == 1:
        divisor = 100
    else:
        digits = digits[:2]
        divisor = 10 ** len(digits)
    fraction = int(digits) / divisor

    # copysign keeps the sign of a "-0" integer part
    merged = math.copysign(abs(integer_part) + fraction, integer_part)
    return round(merged, 2)


def resolve_concentration(payload: Mapping[str, Any], policy: MergePolicy) -> float | None:
    parts = detect_ppm_parts(payload)
    if policy is MergePolicy.INTEGER_ONLY:
        return parts.integer_part

    merged = merge_int_and_dec(parts.integer_part, parts.decimal_part)
    return merged if merged is not None else parts.integer_part
