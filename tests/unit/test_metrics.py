"""
Unit tests for Prometheus metrics helpers.
"""

from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

from dewpoint_controller import metrics


def sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels or None) or 0.0


@pytest.fixture
def reset_server_state():
    metrics._server_state["started"] = False
    yield
    metrics._server_state["started"] = False


class TestMetrics:
    """Tests for metric recording"""

    def test_counters_increment(self):
        """Test that each record helper increments its labelled counter"""
        before = sample("dewpoint_connection_events_total", event="connected")
        metrics.record_connection_event("connected")
        assert sample("dewpoint_connection_events_total", event="connected") == before + 1

        before = sample("dewpoint_decode_errors_total", reason="invalid_payload")
        metrics.record_decode_error("invalid_payload")
        assert sample("dewpoint_decode_errors_total", reason="invalid_payload") == before + 1

        before = sample("dewpoint_derived_publish_total", kind="dew_point", outcome="success")
        metrics.record_derived_publish("dew_point", "success")
        assert sample("dewpoint_derived_publish_total", kind="dew_point", outcome="success") == before + 1

        before = sample("dewpoint_messages_received_total", location="supply", field="humidity")
        metrics.record_message_received("supply", "humidity")
        assert sample("dewpoint_messages_received_total", location="supply", field="humidity") == before + 1

        before = sample("dewpoint_reconnect_attempts_total", outcome="failure")
        metrics.record_reconnect_attempt("failure")
        assert sample("dewpoint_reconnect_attempts_total", outcome="failure") == before + 1

    def test_dirty_sensors_gauge(self):
        """Test the dirty sensor gauge"""
        metrics.set_dirty_sensors(3)
        assert sample("dewpoint_dirty_sensors") == 3.0
        metrics.set_dirty_sensors(0)
        assert sample("dewpoint_dirty_sensors") == 0.0


class TestMetricsServer:
    """Tests for start_metrics_server()"""

    def test_starts_once(self, reset_server_state):
        """Test that the HTTP server is started on the first call only"""
        with patch("dewpoint_controller.metrics.start_http_server") as start:
            assert metrics.start_metrics_server(9400) is True
            assert metrics.start_metrics_server(9400) is False

        start.assert_called_once_with(9400)

    def test_start_failure_allows_retry(self, reset_server_state):
        """Test that a failed bind does not mark the server as started"""
        with patch("dewpoint_controller.metrics.start_http_server", side_effect=OSError("in use")):
            with pytest.raises(OSError, match="in use"):
                _ = metrics.start_metrics_server(9400)

        assert metrics._server_state["started"] is False
