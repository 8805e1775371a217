""" BRIDGE DOC: Creality printer WebSocket -> MQTT bridge

High-level overview:
- Reads JSON snapshots pushed by the printer's WebSocket (`CREALITY_WS_URL`).
- On the first snapshot derives the device identity, removes deprecated HA
  entities and publishes Home Assistant discovery once.
- On every snapshot publishes generic and derived topics under `<base>/...`
  through the rate-limited gateway; new CFS boxes get discovery once.
- Republishes discovery when Home Assistant announces `online` on `<prefix>/status`.
- Forwards `<base>/light_sw/set` (ON/OFF/1/0) to the printer as a `set` command.

Threads: the WebSocket session runs on the asyncio loop (handler in a worker
thread, one frame at a time); paho-mqtt runs its own network thread for
subscriptions. Shared state is guarded by short locks never held across I/O.
"""
import asyncio
import concurrent.futures
import json
import signal
import ssl
import sys
import threading
from typing import List, Optional, Set, Tuple

import aiohttp
import paho.mqtt.client as mqtt

from . import log
from .config import Config, describe, load_config
from .discovery import (
    DeviceIdentity,
    build_catalog,
    build_cfs_descriptors,
    build_cleanup,
    camera_stream_url,
    extract_device_identity,
    purge_messages,
)
from .errors import ConfigError, SessionError, SessionNotConnected, SnapshotError
from .gateway import PublishGateway
from .mapper import Mapper, box_id, decode_snapshot
from .session import IngestionSession
from .status import StatusTracker
from .topics import OFFLINE, ONLINE, OutboundMessage, TopicBuilder

CONNECT_TIMEOUT = 10.0
KEEPALIVE = 60


def light_command_frame(payload: str) -> Optional[str]:
    """HA switch payload -> printer `set` command; None for anything but ON/OFF/1/0."""
    value = {"ON": 1, "1": 1, "OFF": 0, "0": 0}.get(payload.strip())
    if value is None:
        return None
    return json.dumps({"method": "set", "params": {"lightSw": value}}, separators=(",", ":"))


class Bridge:
    """
    Glue between the printer session and the MQTT gateway.

    Owns all per-session state: device identity, cached discovery set,
    announced CFS boxes and (through the Mapper) the printer status cache.
    """

    def __init__(self, cfg: Config, gateway: PublishGateway,
                 session: Optional[IngestionSession] = None,
                 tracker: Optional[StatusTracker] = None):
        self.cfg = cfg
        self.gateway = gateway
        self.session = session
        self.topics = TopicBuilder(cfg.base_topic, cfg.discovery_prefix)
        self.mapper = Mapper(cfg.base_topic, tracker)
        self._lock = threading.Lock()
        self.identity: Optional[DeviceIdentity] = None
        self._discovery: Tuple[OutboundMessage, ...] = ()
        self._cfs_published: Set[int] = set()

    # ----- WebSocket side -----

    # [BRIDGE DOC] Session handler: one snapshot in, discovery + state out.
    def handle_message(self, data: bytes):
        log.log("WS RX", f"len={len(data)}")
        try:
            snapshot = decode_snapshot(data)
        except SnapshotError as e:
            log.error("Failed to decode message:", e)
            return

        self._ensure_discovery(snapshot)
        self._ensure_cfs_discovery(snapshot)
        self._publish_all(self.mapper.map(snapshot))

    def _ensure_discovery(self, snapshot):
        with self._lock:
            if self.identity is not None:
                return
            identity = extract_device_identity(
                snapshot,
                name_override=self.cfg.device_name,
                printer_address=self.cfg.printer_address,
            )
            cleanup = build_cleanup(identity, self.topics)
            self._discovery = tuple(build_catalog(identity, self.topics))
            self.identity = identity

        log.info("Device detected:", f"id={identity.id}", f"name={identity.name}", f"model={identity.model}")
        if identity.printer_address:
            log.info("Camera stream URL:", camera_stream_url(identity))
        if cleanup:
            log.info("Cleaning up old entities:", len(cleanup))
            self._publish_all(cleanup)
        self.republish_discovery()

    def _ensure_cfs_discovery(self, snapshot):
        bid = box_id(snapshot)
        if bid is None:
            return
        with self._lock:
            if self.identity is None or bid in self._cfs_published:
                return
            self._cfs_published.add(bid)
            identity = self.identity
        log.info("Publishing CFS discovery for box", bid)
        self._publish_all(build_cfs_descriptors(identity, self.topics, bid))

    def _publish_all(self, msgs: List[OutboundMessage]):
        for m in msgs:
            self.gateway.publish(m.topic, m.payload, m.retain)

    def republish_discovery(self) -> int:
        """Publish the cached discovery set; no-op (0) before the first snapshot."""
        with self._lock:
            msgs = self._discovery
        if not msgs:
            return 0
        log.info("Publishing MQTT discovery:", len(msgs), "messages")
        self._publish_all(list(msgs))
        return len(msgs)

    # ----- MQTT side -----

    def on_platform_status(self, payload: str):
        log.log("Home Assistant status:", payload)
        if payload.strip() == ONLINE:
            log.info("Home Assistant came online, republishing discovery")
            self.republish_discovery()

    def on_light_command(self, payload: str) -> bool:
        frame = light_command_frame(payload)
        if frame is None:
            log.warn("Invalid light command payload:", repr(payload))
            return False
        if self.session is None:
            log.error("Failed to send light command: no printer session")
            return False
        try:
            self.session.send_threadsafe(frame)
        except (SessionNotConnected, aiohttp.ClientError, ConnectionError,
                concurrent.futures.TimeoutError) as e:
            log.error("Failed to send light command to printer:", e)
            return False
        log.info("Sent light command to printer:", frame)
        return True

    # [BRIDGE DOC] paho callbacks: birth message and (re)subscriptions on every connect.
    def on_mqtt_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            log.error("MQTT connect refused:", reason_code)
            return
        log.info("MQTT connected")
        self.gateway.publish(self.topics.availability(), ONLINE, retain=True, wait=False)
        client.subscribe(self.topics.platform_status(), qos=0)
        client.subscribe(self.topics.light_command(), qos=0)
        log.info("Subscribed:", self.topics.platform_status(), "and", self.topics.light_command())

    def on_mqtt_message(self, client, userdata, msg):
        payload = msg.payload.decode("utf-8", "ignore") if msg.payload else ""
        if msg.topic == self.topics.platform_status():
            # republishing blocks on acks, which this (network) thread delivers
            threading.Thread(target=self.on_platform_status, args=(payload,),
                             name="discovery-republish", daemon=True).start()
        elif msg.topic == self.topics.light_command():
            log.info("Received light command:", payload)
            self.on_light_command(payload)

    def attach(self, client: mqtt.Client):
        client.will_set(self.topics.availability(), OFFLINE, qos=0, retain=True)
        client.on_connect = self.on_mqtt_connect
        client.on_message = self.on_mqtt_message

    def shutdown(self):
        """Graceful offline: availability goes to `offline` before the broker disconnect."""
        self.gateway.publish(self.topics.availability(), OFFLINE, retain=True)


def purge_device(gateway: PublishGateway, topics: TopicBuilder, device_id: str) -> int:
    """Delete every known discovery entity for device_id. Returns how many deletes went out."""
    deleted = 0
    for m in purge_messages(device_id, topics):
        if gateway.publish(m.topic, m.payload, m.retain):
            log.log("Deleted entity", m.topic)
            deleted += 1
    return deleted


def make_mqtt_client(cfg: Config, suffix: str = "") -> mqtt.Client:
    client = mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=cfg.mqtt_client_id + suffix,
        clean_session=True,
        protocol=mqtt.MQTTv311,
    )
    if cfg.mqtt_username:
        client.username_pw_set(cfg.mqtt_username, cfg.mqtt_password)
    host, port, use_tls = cfg.broker_endpoint()
    if use_tls:
        client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
    client.reconnect_delay_set(min_delay=1, max_delay=30)
    return client


def connect_mqtt(client: mqtt.Client, cfg: Config, timeout: float = CONNECT_TIMEOUT):
    """Connect and start the paho network thread; fail fast if the broker does not answer."""
    host, port, _ = cfg.broker_endpoint()
    log.info("Connecting to MQTT broker", f"{host}:{port}")
    connected = threading.Event()
    prev = client.on_connect

    def _on_connect(c, userdata, flags, reason_code, properties=None):
        if prev is not None:
            prev(c, userdata, flags, reason_code, properties)
        if not reason_code.is_failure:
            connected.set()

    client.on_connect = _on_connect
    client.connect(host, port, keepalive=KEEPALIVE)
    client.loop_start()
    if not connected.wait(timeout):
        client.loop_stop()
        raise ConnectionError(f"MQTT connection to {host}:{port} timed out after {timeout:g}s")


async def _run_session(session: IngestionSession):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(session.stop()))
        except NotImplementedError:
            pass
    await session.run()


# [BRIDGE DOC] Startup: config, MQTT (LWT + birth), WebSocket session until SIGINT/SIGTERM.
def main() -> int:
    try:
        cfg = load_config()
    except ConfigError as e:
        log.error(e)
        return 1
    log.set_level(cfg.log_level)
    print("[BRIDGE] startup:", describe(cfg), file=sys.stderr, flush=True)

    try:
        client = make_mqtt_client(cfg)
    except ConfigError as e:
        log.error(e)
        return 1
    gateway = PublishGateway(client, min_interval=cfg.min_interval)
    if cfg.min_interval > 0:
        log.info("MQTT rate limiting enabled:", f"{cfg.min_interval:g}s per topic")
    else:
        log.info("MQTT rate limiting disabled")

    bridge = Bridge(cfg, gateway)
    session = IngestionSession(cfg.ws_url, bridge.handle_message, retry_delay=cfg.retry_delay)
    bridge.session = session
    bridge.attach(client)

    try:
        connect_mqtt(client, cfg)
    except (OSError, ConnectionError) as e:
        log.error("Failed to connect to MQTT broker:", e)
        return 1

    rc = 0
    try:
        log.info("Starting WebSocket connection", cfg.ws_url)
        asyncio.run(_run_session(session))
    except SessionError as e:
        log.error(e)
        rc = 1
    except KeyboardInterrupt:
        pass
    finally:
        log.info("Shutting down")
        bridge.shutdown()
        client.disconnect()
        client.loop_stop()
    return rc
