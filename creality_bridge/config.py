""" Environment configuration.

Environment variables:
- CREALITY_WS_URL: printer WebSocket, e.g. ws://192.168.1.50:9999/ (required).
- CREALITY_MQTT_BROKER: broker URL (default: tcp://localhost:1883); ssl://, tls:// or mqtts:// enable TLS.
- CREALITY_MQTT_CLIENT_ID: MQTT client id (default: creality2mqtt).
- CREALITY_MQTT_USERNAME/CREALITY_MQTT_PASSWORD: optional broker auth.
- CREALITY_MQTT_BASE_TOPIC: base for local topics (default: creality/printer).
- CREALITY_DISCOVERY_PREFIX: HA discovery (default: homeassistant).
- CREALITY_DEVICE_NAME: device name override for Home Assistant.
- CREALITY_MQTT_MIN_INTERVAL: seconds between non-retained publishes per topic (default: 60, 0 disables).
- CREALITY_WS_RETRY_DELAY: seconds between WebSocket reconnects (default: 5).
- CREALITY_LOG_LEVEL/CREALITY_DEBUG: verbosity.
"""
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from . import log
from .errors import ConfigError

DEFAULT_BROKER = "tcp://localhost:1883"
DEFAULT_MIN_INTERVAL = 60.0
DEFAULT_RETRY_DELAY = 5.0

TLS_SCHEMES = ("ssl", "tls", "mqtts")


@dataclass(frozen=True)
class Config:
    ws_url: str
    mqtt_broker: str = DEFAULT_BROKER
    mqtt_client_id: str = "creality2mqtt"
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    base_topic: str = "creality/printer"
    discovery_prefix: str = "homeassistant"
    device_name: Optional[str] = None
    min_interval: float = DEFAULT_MIN_INTERVAL
    retry_delay: float = DEFAULT_RETRY_DELAY
    log_level: str = "info"

    @property
    def printer_address(self) -> str:
        """Host part of the WebSocket URL, used for the camera stream URL."""
        try:
            return urlsplit(self.ws_url).hostname or ""
        except ValueError:
            return ""

    def broker_endpoint(self):
        """Return (host, port, use_tls) parsed from mqtt_broker."""
        u = urlsplit(self.mqtt_broker if "://" in self.mqtt_broker else f"tcp://{self.mqtt_broker}")
        use_tls = u.scheme.lower() in TLS_SCHEMES
        try:
            port = u.port
        except ValueError as e:
            raise ConfigError(f"invalid MQTT broker port in {self.mqtt_broker!r}") from e
        if not u.hostname:
            raise ConfigError(f"invalid MQTT broker URL {self.mqtt_broker!r}")
        return u.hostname, port or (8883 if use_tls else 1883), use_tls


def _seconds(raw, default: float) -> float:
    # best effort: unparsable or negative values fall back to the default
    if raw is None or str(raw).strip() == "":
        return default
    try:
        v = float(str(raw).strip())
    except ValueError:
        return default
    if v < 0:
        return default
    return v


def load_config(environ=None, require_ws_url: bool = True) -> Config:
    """Build a Config from environment variables; raises ConfigError without CREALITY_WS_URL."""
    env = os.environ if environ is None else environ

    def get(key, default=None):
        v = env.get(key)
        return v if v else default

    ws_url = (get("CREALITY_WS_URL") or "").strip()
    if not ws_url:
        if require_ws_url:
            raise ConfigError("CREALITY_WS_URL is required (e.g. ws://192.168.1.50:9999/)")
    elif urlsplit(ws_url).scheme.lower() not in ("ws", "wss"):
        raise ConfigError(f"CREALITY_WS_URL must be a ws:// or wss:// URL, got {ws_url!r}")

    level = get("CREALITY_LOG_LEVEL", "info").strip().lower()
    if get("CREALITY_DEBUG", "false").lower() == "true":
        level = "debug"
    if level not in log.LEVELS:
        log.warn("Invalid log level, using info:", level)
        level = "info"

    return Config(
        ws_url=ws_url,
        mqtt_broker=get("CREALITY_MQTT_BROKER", DEFAULT_BROKER),
        mqtt_client_id=get("CREALITY_MQTT_CLIENT_ID", "creality2mqtt"),
        mqtt_username=get("CREALITY_MQTT_USERNAME"),
        mqtt_password=get("CREALITY_MQTT_PASSWORD"),
        base_topic=get("CREALITY_MQTT_BASE_TOPIC", "creality/printer").rstrip("/"),
        discovery_prefix=get("CREALITY_DISCOVERY_PREFIX", "homeassistant").rstrip("/"),
        device_name=get("CREALITY_DEVICE_NAME"),
        min_interval=_seconds(get("CREALITY_MQTT_MIN_INTERVAL"), DEFAULT_MIN_INTERVAL),
        retry_delay=_seconds(get("CREALITY_WS_RETRY_DELAY"), DEFAULT_RETRY_DELAY),
        log_level=level,
    )


def describe(cfg: Config) -> str:
    """One-line startup summary, credentials masked."""
    return " ".join([
        f"ws_url={cfg.ws_url}",
        f"broker={cfg.mqtt_broker}",
        f"client_id={cfg.mqtt_client_id}",
        f"user={'set' if (cfg.mqtt_username and cfg.mqtt_password) else 'none'}",
        f"base_topic={cfg.base_topic}",
        f"discovery_prefix={cfg.discovery_prefix}",
        f"device_name={cfg.device_name or '<auto>'}",
        f"min_interval={cfg.min_interval:g}s",
        f"log_level={cfg.log_level}",
    ])
