""" Rate-limited MQTT publishing.

All outbound traffic goes through PublishGateway.publish():
- retained messages (discovery, availability) and everything while throttling
  is disabled are sent immediately,
- non-retained messages are limited to one send per topic per `min_interval`.
  A payload arriving inside the window replaces any pending one and is not
  sent; the next publish on that topic after the window sends the pending
  payload instead of its own. Nothing is scheduled in the background.

Publishing while the broker is disconnected drops the message (logged, not
queued). Broker failures are logged and never raised.
"""
import threading
import time
from typing import Callable, Dict, Optional

import paho.mqtt.client as mqtt

from . import log

PUBLISH_TIMEOUT = 5.0


class PublishGateway:
    def __init__(self, client: mqtt.Client, min_interval: float = 0.0,
                 publish_timeout: float = PUBLISH_TIMEOUT,
                 clock: Callable[[], float] = time.monotonic):
        self._client = client
        self.min_interval = min_interval
        self.publish_timeout = publish_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._last_sent: Dict[str, float] = {}
        self._pending: Dict[str, str] = {}

    def pending(self, topic: str) -> Optional[str]:
        with self._lock:
            return self._pending.get(topic)

    def publish(self, topic: str, payload: str, retain: bool = False, wait: bool = True) -> bool:
        """Send or coalesce one message. Returns True when a message went out on this call.

        wait=False only queues the message; use it from paho callbacks, where
        the network thread cannot flush while we block.
        """
        if not self._client.is_connected():
            log.warn("MQTT not connected, dropping", topic)
            return False

        # Do not throttle retained messages (discovery, availability)
        if retain or self.min_interval <= 0:
            return self._send(topic, payload, retain, wait)

        now = self._clock()
        with self._lock:
            last = self._last_sent.get(topic)
            if last is not None and now - last < self.min_interval:
                self._pending[topic] = payload
                return False
            pending = self._pending.pop(topic, None)
            to_send = pending if pending else payload
            # stamp before unlocking so a racing caller lands inside the window
            self._last_sent[topic] = now
        return self._send(topic, to_send, retain, wait)

    def _send(self, topic: str, payload: str, retain: bool, wait: bool = True) -> bool:
        log.log("PUB", topic, f"len={len(payload)}", f"retain={retain}")
        try:
            info = self._client.publish(topic, payload, qos=0, retain=retain)
            if not wait:
                return info.rc == mqtt.MQTT_ERR_SUCCESS
            info.wait_for_publish(timeout=self.publish_timeout)
        except (RuntimeError, ValueError) as e:
            log.error("MQTT publish failed", topic, e)
            return False
        if not info.is_published():
            log.error("MQTT publish timed out", topic, f"after {self.publish_timeout:g}s")
            return False
        return True
