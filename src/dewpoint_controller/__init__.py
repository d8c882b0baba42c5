"""Dew point controller: derives psychrometric values from MQTT sensor topics."""

__version__ = "0.4.0"
