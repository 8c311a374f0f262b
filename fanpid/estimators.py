"""Setpoint and process-variable estimation from raw temperature readings

The setpoint follows room temperature inside a tolerance band around the
configured target:

    T_amb = mean(ambient readings)
    T_set = clamp(T_amb, base - tol, base + tol)

with the band comparison done on T_amb rounded half up, so sub-degree drift
reaches the controller while whole-degree excursions are clamped.

The process variable is the mean group temperature until any single unit hits
the hard ceiling, after which the hottest unit drives the loop.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

import numpy as np


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties away from zero

    Unlike the built-in round(), 2.5 -> 3 and -2.5 -> -3.
    """
    return int(Decimal(repr(float(value))).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_target(
    ambient_readings: Sequence[float], base: float, tolerance: float
) -> float:
    """Working target temperature from the ambient sensors

    Args:
        ambient_readings: Ambient temperatures [°C]. Empty means no ambient
            sensors are configured and the base target is used as-is.
        base: Configured target temperature [°C]
        tolerance: Half-width of the allowed band around base [°C]

    Returns:
        Setpoint in [base - tolerance, base + tolerance]
    """
    if len(ambient_readings) == 0:
        return float(base)

    ambient = float(np.mean(ambient_readings))
    rounded = round_half_up(ambient)

    if rounded > base + tolerance:
        return float(base + tolerance)
    if rounded < base - tolerance:
        return float(base - tolerance)

    # Rounding can pull a mean just outside the band back in; keep the band
    return float(min(max(ambient, base - tolerance), base + tolerance))


def compute_group_temperature(readings: Sequence[float], hard_ceiling: float) -> float:
    """Representative temperature of a group of units (drives, HBA)

    Raises:
        ValueError: If readings is empty
    """
    if len(readings) == 0:
        raise ValueError("No temperature readings for group")

    values = np.asarray(readings, dtype=float)
    hottest = float(values.max())
    if hottest >= hard_ceiling:
        return hottest
    return float(values.mean())
