# flowprobe/metrics.py
"""
Per-step metric helpers: CO2 estimate and duration parsing.

The CO2 estimate follows the OneByte model: energy per transferred byte in
the data centre and network, multiplied by the global grid carbon intensity.
It is a pure function of the response size.
"""

from __future__ import annotations

import re

# ==================== CO2 (OneByte model) ====================

KWH_PER_BYTE_IN_DC = 7.2e-10
FIXED_NETWORK_WIRED = 4.3e-10
FIXED_NETWORK_WIFI = 1.52e-9
FOUR_G_MOBILE = 8.84e-9
# network energy is the mean of the three access technologies
KWH_PER_BYTE_FOR_NETWORK = (FIXED_NETWORK_WIRED + FIXED_NETWORK_WIFI + FOUR_G_MOBILE) / 3
CO2_PER_KWH_IN_DC_GREY = 519.6  # grams per kWh


def co2_per_byte(num_bytes: int | float | None) -> float:
    """Estimated grams of CO2 for transferring `num_bytes`."""
    if not num_bytes:
        return 0.0
    energy = float(num_bytes) * (KWH_PER_BYTE_IN_DC + KWH_PER_BYTE_FOR_NETWORK)
    return energy * CO2_PER_KWH_IN_DC_GREY


# ==================== Durations ====================

_UNITS_MS = {
    "ms": 1.0,
    "s": 1000.0,
    "sec": 1000.0,
    "m": 60_000.0,
    "min": 60_000.0,
    "h": 3_600_000.0,
    "d": 86_400_000.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*(ms|sec|min|s|m|h|d)?", re.I)


def parse_duration(value: str | int | float | None, default_ms: float = 5000.0) -> float:
    """
    Parse a duration such as "250ms", "2s", "1m30s" or "1500" into milliseconds.
    Bare numbers are milliseconds.
    """
    if value is None or value == "":
        return default_ms
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    pos = 0
    total = 0.0
    for m in _DURATION_PART.finditer(text):
        if text[pos:m.start()].strip():
            raise ValueError(f"Invalid duration: {value!r}")
        amount, unit = m.groups()
        total += float(amount) * _UNITS_MS[(unit or "ms").lower()]
        pos = m.end()

    if pos == 0 or text[pos:].strip():
        raise ValueError(f"Invalid duration: {value!r}")
    return total
