"""
Unit tests for the core data types.

Covers TrackedValue dirty tracking, sensor topic derivation and the sensor's
aggregate needs_processed flag.
"""

import math

import pytest

from dewpoint_controller.const import DEFAULT_ALTITUDE_METERS
from dewpoint_controller.models import (
    ConnectionEvent,
    QoS,
    Sensor,
    SensorField,
    SensorLocation,
    SensorTopics,
    TrackedValue,
)


class TestTrackedValue:
    """Tests for TrackedValue change detection"""

    def test_starts_clean_and_empty(self):
        """Test default construction"""
        tracked = TrackedValue()

        assert tracked.value is None
        assert tracked.needs_processed is False

    def test_new_value_marks_dirty(self):
        """Test that assigning a different value sets needs_processed"""
        tracked = TrackedValue[float]()
        tracked.value = 21.5

        assert tracked.value == 21.5
        assert tracked.needs_processed is True

    def test_equal_value_does_not_mark_dirty(self):
        """Test that assigning the same value twice leaves the flag false after the first clear"""
        tracked = TrackedValue[float]()
        tracked.value = 21.5
        tracked.needs_processed = False

        tracked.value = 21.5

        assert tracked.needs_processed is False

    def test_dirty_iff_value_differs(self):
        """Test needs_processed over a sequence of assignments, clearing after each"""
        tracked = TrackedValue[float]()
        sequence = [1.0, 1.0, 2.0, 2.0, 2.0, 1.0, None, None, 3.0]
        previous = None
        for value in sequence:
            tracked.value = value
            assert tracked.needs_processed is (value != previous)
            tracked.needs_processed = False
            previous = value

    def test_nan_is_never_equal(self):
        """Test that NaN marks the value dirty on every assignment with default equality"""
        tracked = TrackedValue[float](math.nan)

        tracked.value = math.nan

        assert tracked.needs_processed is True

    def test_injected_equality(self):
        """Test that a custom equality function decides what counts as a change"""

        def close_enough(lhs, rhs):
            return lhs is not None and rhs is not None and abs(lhs - rhs) < 0.1

        tracked = TrackedValue[float](20.0, is_equal=close_enough)
        tracked.value = 20.05
        assert tracked.needs_processed is False
        assert tracked.value == 20.0

        tracked.value = 20.5
        assert tracked.needs_processed is True
        assert tracked.value == 20.5

    def test_explicit_flag(self):
        """Test that needs_processed can be set directly"""
        tracked = TrackedValue[float](1.0, needs_processed=True)
        assert tracked.needs_processed is True

        tracked.needs_processed = False
        assert tracked.needs_processed is False

    def test_repr(self):
        """Test string representation"""
        assert repr(TrackedValue(1.5)) == "TrackedValue(1.5, needs_processed=False)"


class TestSensorTopics:
    """Tests for topic derivation"""

    def test_default_prefix(self):
        """Test topics under the default prefix"""
        topics = SensorTopics.for_location(SensorLocation.MIXED_AIR)

        assert topics.temperature == "frankensystem/sensor/mixed_air_temperature/state"
        assert topics.humidity == "frankensystem/sensor/mixed_air_humidity/state"
        assert topics.dew_point == "frankensystem/sensor/mixed_air_dew_point/state"
        assert topics.enthalpy == "frankensystem/sensor/mixed_air_enthalpy/state"

    def test_trailing_slash_dropped(self):
        """Test that a trailing slash on the prefix is removed"""
        topics = SensorTopics.for_location(SensorLocation.RETURN, prefix="house/")

        assert topics.temperature == "house/sensor/return_temperature/state"

    @pytest.mark.parametrize("prefix", ["", None, "/"])
    def test_empty_prefix_has_no_leading_slash(self, prefix):
        """Test that an empty prefix yields relative topics, like relay topics"""
        topics = SensorTopics.for_location(SensorLocation.MIXED_AIR, prefix=prefix)

        assert topics.temperature == "sensor/mixed_air_temperature/state"
        assert topics.enthalpy == "sensor/mixed_air_enthalpy/state"

    def test_inbound_topics(self):
        """Test that only temperature and humidity are inbound"""
        topics = SensorTopics.for_location(SensorLocation.SUPPLY)

        assert topics.inbound == (topics.temperature, topics.humidity)
        assert topics.dew_point not in topics.inbound
        assert topics.enthalpy not in topics.inbound


class TestSensor:
    """Tests for Sensor"""

    def test_create_defaults(self):
        """Test Sensor.create with defaults"""
        sensor = Sensor.create(SensorLocation.POST_COIL)

        assert sensor.id is SensorLocation.POST_COIL
        assert sensor.altitude == DEFAULT_ALTITUDE_METERS
        assert sensor.temperature.value is None
        assert sensor.humidity.value is None
        assert sensor.needs_processed is False
        assert sensor.topics == SensorTopics.for_location(SensorLocation.POST_COIL)

    def test_topics_filled_in_when_omitted(self):
        """Test that the plain constructor derives default topics"""
        sensor = Sensor(location=SensorLocation.RETURN)

        assert sensor.topics.temperature.endswith("return_temperature/state")

    def test_prefix_sets_topics(self):
        """Test that the constructor's prefix flows into the topics"""
        sensor = Sensor(location=SensorLocation.SUPPLY, prefix="house")

        assert sensor.topics.temperature == "house/sensor/supply_temperature/state"
        assert sensor.topics == SensorTopics.for_location(SensorLocation.SUPPLY, prefix="house")

    def test_needs_processed_is_or_of_fields(self):
        """Test the aggregate flag"""
        sensor = Sensor.create(SensorLocation.MIXED_AIR)

        sensor.humidity.value = 50.0
        assert sensor.temperature.needs_processed is False
        assert sensor.needs_processed is True

        sensor.humidity.needs_processed = False
        sensor.temperature.value = 20.0
        assert sensor.needs_processed is True

    def test_needs_processed_setter_writes_both(self):
        """Test that clearing the sensor clears both fields"""
        sensor = Sensor.create(SensorLocation.MIXED_AIR, temperature=20.0, humidity=50.0, needs_processed=True)
        assert sensor.temperature.needs_processed and sensor.humidity.needs_processed

        sensor.needs_processed = False

        assert sensor.temperature.needs_processed is False
        assert sensor.humidity.needs_processed is False

    def test_tracked(self):
        """Test field lookup by kind"""
        sensor = Sensor.create(SensorLocation.MIXED_AIR)

        assert sensor.tracked(SensorField.TEMPERATURE) is sensor.temperature
        assert sensor.tracked(SensorField.HUMIDITY) is sensor.humidity

    @pytest.mark.parametrize(
        ("temperature", "humidity", "usable"),
        [
            (20.0, 50.0, True),
            (None, 50.0, False),
            (20.0, None, False),
            (math.nan, 50.0, False),
            (20.0, math.nan, False),
        ],
    )
    def test_inputs_usable(self, temperature, humidity, usable):
        """Test that both readings must be present and not NaN"""
        sensor = Sensor.create(SensorLocation.MIXED_AIR, temperature=temperature, humidity=humidity)

        assert sensor.inputs_usable is usable


class TestEnums:
    """Tests for enum values used on the wire"""

    def test_qos_values(self):
        """Test MQTT QoS levels"""
        assert int(QoS.AT_MOST_ONCE) == 0
        assert int(QoS.AT_LEAST_ONCE) == 1
        assert int(QoS.EXACTLY_ONCE) == 2

    def test_locations(self):
        """Test the sensor location vocabulary"""
        assert [loc.value for loc in SensorLocation] == ["mixed_air", "post_coil", "return", "supply"]

    def test_connection_events(self):
        """Test connection event values"""
        assert {e.value for e in ConnectionEvent} == {"connected", "disconnected", "shutting_down"}
