"""
Unit tests for dew point and enthalpy calculations.
"""

import math

import pytest

from dewpoint_controller.models import DerivedReading, Sensor, SensorLocation
from dewpoint_controller.psychrometrics import compute, compute_for, dew_point, enthalpy


class TestDewPoint:
    """Tests for dew_point()"""

    def test_reference_value(self):
        """Test 20 °C at 50% RH against the textbook dew point of ~9.3 °C"""
        assert dew_point(20.0, 50.0) == pytest.approx(9.27, abs=0.1)

    def test_saturated_air(self):
        """Test that at 100% RH the dew point equals the dry bulb"""
        assert dew_point(15.0, 100.0) == pytest.approx(15.0, abs=0.05)

    @pytest.mark.parametrize(("dry_bulb", "rh"), [(None, 50.0), (20.0, None), (math.nan, 50.0), (20.0, math.nan)])
    def test_unusable_inputs(self, dry_bulb, rh):
        """Test that missing or NaN inputs yield None"""
        assert dew_point(dry_bulb, rh) is None

    def test_rejected_by_library(self):
        """Test that inputs psychrolib rejects yield None instead of raising"""
        assert dew_point(20.0, 150.0) is None


class TestEnthalpy:
    """Tests for enthalpy()"""

    def test_reference_value_sea_level(self):
        """Test 20 °C at 50% RH at sea level, ~38.5 kJ/kg"""
        assert enthalpy(20.0, 50.0, 0.0) == pytest.approx(38.5, abs=0.3)

    def test_altitude_raises_enthalpy(self):
        """Test that lower pressure at altitude increases the humidity ratio"""
        assert enthalpy(20.0, 50.0, 1500.0) > enthalpy(20.0, 50.0, 0.0)

    def test_unusable_inputs(self):
        """Test None and NaN inputs"""
        assert enthalpy(None, 50.0, 0.0) is None
        assert enthalpy(20.0, math.nan, 0.0) is None
        assert enthalpy(20.0, 50.0, math.nan) is None

    def test_rejected_by_library(self):
        """Test out of range humidity"""
        assert enthalpy(20.0, 150.0, 0.0) is None


class TestCompute:
    """Tests for compute() and compute_for()"""

    def test_compute(self):
        """Test that both members are filled for valid input"""
        reading = compute(20.0, 50.0, 0.0)

        assert isinstance(reading, DerivedReading)
        assert reading.dew_point == pytest.approx(dew_point(20.0, 50.0))
        assert reading.enthalpy == pytest.approx(enthalpy(20.0, 50.0, 0.0))

    def test_compute_missing_input(self):
        """Test that the reading as a whole is None when an input is missing"""
        assert compute(20.0, None, 0.0) is None
        assert compute(math.nan, 50.0, 0.0) is None

    def test_compute_for_sensor(self):
        """Test compute_for uses the sensor's readings and altitude"""
        sensor = Sensor.create(SensorLocation.SUPPLY, altitude=500.0, temperature=24.0, humidity=40.0)

        reading = compute_for(sensor)

        assert reading == compute(24.0, 40.0, 500.0)

    def test_compute_for_incomplete_sensor(self):
        """Test a sensor with only a temperature"""
        sensor = Sensor.create(SensorLocation.SUPPLY, temperature=24.0)

        assert compute_for(sensor) is None

    def test_compute_for_nan_reading(self):
        """Test that a NaN reading on the sensor yields None"""
        sensor = Sensor.create(SensorLocation.RETURN, temperature=22.0, humidity=math.nan)

        assert compute_for(sensor) is None
