"""Dew point and enthalpy of moist air, computed with psychrolib.

Readings arrive as dry bulb temperature in °C and relative humidity in percent.
Results are °C for the dew point and kJ/kg of dry air for the enthalpy. Inputs
psychrolib rejects (NaN, humidity out of range, ...) yield None instead of raising.
"""

from __future__ import annotations

import math

import psychrolib

from dewpoint_controller.models import DerivedReading, Sensor

__all__ = ["compute", "compute_for", "dew_point", "enthalpy"]

psychrolib.SetUnitSystem(psychrolib.SI)


def _has_nan(*values: float) -> bool:
    return any(math.isnan(v) for v in values)


def dew_point(dry_bulb: float | None, relative_humidity: float | None) -> float | None:
    """Dew point temperature in °C, or None for unusable inputs."""
    if dry_bulb is None or relative_humidity is None or _has_nan(dry_bulb, relative_humidity):
        return None
    try:
        return psychrolib.GetTDewPointFromRelHum(dry_bulb, relative_humidity / 100.0)
    except (ValueError, ArithmeticError):
        return None


def enthalpy(dry_bulb: float | None, relative_humidity: float | None, altitude: float) -> float | None:
    """Moist air enthalpy in kJ/kg of dry air at ``altitude`` meters, or None for unusable inputs."""
    if dry_bulb is None or relative_humidity is None or _has_nan(dry_bulb, relative_humidity, altitude):
        return None
    try:
        pressure = psychrolib.GetStandardAtmPressure(altitude)
        hum_ratio = psychrolib.GetHumRatioFromRelHum(dry_bulb, relative_humidity / 100.0, pressure)
        return psychrolib.GetMoistAirEnthalpy(dry_bulb, hum_ratio) / 1000.0
    except (ValueError, ArithmeticError):
        return None


def compute(dry_bulb: float | None, relative_humidity: float | None, altitude: float) -> DerivedReading | None:
    """Both derived values, or None when either input is missing or NaN."""
    if dry_bulb is None or relative_humidity is None or _has_nan(dry_bulb, relative_humidity):
        return None
    return DerivedReading(
        dew_point=dew_point(dry_bulb, relative_humidity),
        enthalpy=enthalpy(dry_bulb, relative_humidity, altitude),
    )


def compute_for(sensor: Sensor) -> DerivedReading | None:
    """:func:`compute` from a sensor's current readings; None until both are usable."""
    if not sensor.inputs_usable:
        return None
    return compute(sensor.temperature.value, sensor.humidity.value, sensor.altitude)
