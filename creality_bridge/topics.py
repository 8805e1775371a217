""" Topic naming and the outbound message type.

Layout (base = CREALITY_MQTT_BASE_TOPIC, prefix = CREALITY_DISCOVERY_PREFIX):
- `<base>/status`                 bridge availability (LWT, retained)
- `<prefix>/status`               Home Assistant birth/death
- `<base>/light_sw`, `<base>/light_sw/set`
- `<base>/camera_stream_url`
- `<prefix>/<component>/<device_id>/<entity_id>/config`
- `<base>/<key>` and structured `<base>/temperature/...`, `<base>/job/...`, `<base>/cfs/<id>/...`
"""
from typing import NamedTuple

ONLINE = "online"
OFFLINE = "offline"


class OutboundMessage(NamedTuple):
    topic: str
    payload: str
    retain: bool = False


class TopicBuilder:
    def __init__(self, base_topic: str, discovery_prefix: str):
        self.base = base_topic
        self.prefix = discovery_prefix

    def availability(self) -> str:
        return f"{self.base}/status"

    def platform_status(self) -> str:
        return f"{self.prefix}/status"

    def light_state(self) -> str:
        return f"{self.base}/light_sw"

    def light_command(self) -> str:
        return f"{self.base}/light_sw/set"

    def camera_stream_url(self) -> str:
        return f"{self.base}/camera_stream_url"

    def discovery(self, component: str, device_id: str, entity_id: str) -> str:
        return f"{self.prefix}/{component}/{device_id}/{entity_id}/config"

    def data(self, subtopic: str) -> str:
        return f"{self.base}/{subtopic}"
