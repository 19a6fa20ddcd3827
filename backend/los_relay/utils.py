import math
import re
from typing import Any

_CANONICAL_STRIP = re.compile(r"[\s\-()_]+")


def canonical_key(raw: Any) -> str:
    """Fold a field name to its comparison form.

    Lowercases and drops whitespace, hyphens, parentheses and underscores, so
    ``"LoS - PPM"``, ``"los_ppm"`` and ``"LOS-PPM"`` all become ``"losppm"``.
    """

    if raw is None:
        return ""
    return _CANONICAL_STRIP.sub("", str(raw).lower())


def to_number(value: Any) -> float | None:
    """Coerce a payload value to a finite float, or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None
