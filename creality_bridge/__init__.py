"""Creality printer WebSocket -> MQTT bridge with Home Assistant discovery."""

__version__ = "0.1.0"
