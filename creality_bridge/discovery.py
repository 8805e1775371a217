""" Home Assistant MQTT discovery for one Creality printer.

Every entity is described once in a declarative table and serialised to a
retained `<prefix>/<component>/<device_id>/<entity_id>/config` message.
The catalog is a pure function of the DeviceIdentity: building it twice
gives byte-identical messages, so republishing after a HA restart is safe.

An empty retained payload on a discovery topic deletes the entity.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .topics import OFFLINE, ONLINE, OutboundMessage, TopicBuilder

MANUFACTURER = "Creality"

DEFAULT_DEVICE_ID = "creality_printer"
DEFAULT_DEVICE_NAME = "Creality Printer"
DEFAULT_DEVICE_MODEL = "K1/K1 SE/K1 Max"

SENSOR = "sensor"
BINARY_SENSOR = "binary_sensor"
SWITCH = "switch"
CAMERA = "camera"

COMPONENTS = (SENSOR, BINARY_SENSOR, SWITCH, CAMERA)

# Removed on every startup; anything also in the current catalog is skipped.
DEPRECATED_ENTITIES = (
    (SENSOR, "printer_online"),
    (SENSOR, "old_temp_sensor"),
    (SENSOR, "camera_stream"),
    (SENSOR, "camera_stream_url"),
    (SENSOR, "last_seen"),
    (BINARY_SENSOR, "light"),  # light is a switch now
    (BINARY_SENSOR, "online"),
    (BINARY_SENSOR, "connected"),
    (BINARY_SENSOR, "camera_stream"),
    (BINARY_SENSOR, "printer_connected"),
    (BINARY_SENSOR, "printer_connected_2"),
)

# Every entity id this bridge has ever announced, current and past; used by purge.
KNOWN_ENTITY_IDS = (
    "nozzle_temp_current",
    "nozzle_temp_target",
    "bed_temp_current",
    "bed_temp_target",
    "printer_status",
    "model_fan_pct",
    "auxiliary_fan_pct",
    "case_fan_pct",
    "print_progress",
    "feed_state",
    "last_seen",
    "camera_stream_url",
    "video_stream",
    "printing",
    "light",
    "part_fan",
    "printer_online",
    "printer_connected",
    "printer_connected_2",
    "online",
    "camera_stream",
    "camera",
    "old_temp_sensor",
)


@dataclass(frozen=True)
class DeviceIdentity:
    id: str
    name: str
    model: str
    printer_address: str = ""

    def device_block(self) -> Dict[str, Any]:
        return {
            "identifiers": [self.id],
            "name": self.name,
            "manufacturer": MANUFACTURER,
            "model": self.model,
        }


def sanitize_device_id(raw: str) -> str:
    return raw.lower().replace(" ", "_").replace("-", "_")


# [BRIDGE DOC] Device id/name/model from the first snapshot, with fallbacks.
def extract_device_identity(snapshot: Mapping[str, Any], name_override: Optional[str] = None,
                            printer_address: str = "") -> DeviceIdentity:
    def pick(*keys):
        for k in keys:
            v = snapshot.get(k)
            if isinstance(v, str) and v:
                return v
        return ""

    device_id = pick("deviceId", "device_id") or DEFAULT_DEVICE_ID
    name = pick("deviceName", "device_name") or DEFAULT_DEVICE_NAME
    model = pick("deviceModel", "device_model") or DEFAULT_DEVICE_MODEL
    if name_override:
        name = name_override
    return DeviceIdentity(
        id=sanitize_device_id(device_id),
        name=name,
        model=model,
        printer_address=printer_address or "",
    )


@dataclass(frozen=True)
class EntityDescriptor:
    component: str
    object_id: str
    name: str
    state_topic: str
    unit: Optional[str] = None
    device_class: Optional[str] = None
    state_class: Optional[str] = None
    icon: Optional[str] = None
    # binary_sensor / switch value coding
    payload_on: Optional[str] = None
    payload_off: Optional[str] = None
    # switch only
    command_topic: Optional[str] = None
    state_on: Optional[str] = None
    state_off: Optional[str] = None

    def config_topic(self, topics: TopicBuilder, identity: DeviceIdentity) -> str:
        return topics.discovery(self.component, identity.id, self.object_id)

    def config(self, topics: TopicBuilder, identity: DeviceIdentity) -> Dict[str, Any]:
        conf = {
            "name": self.name,
            "unique_id": f"{identity.id}_{self.object_id}",
            "state_topic": self.state_topic,
        }
        if self.command_topic:
            conf["command_topic"] = self.command_topic
        conf["availability_topic"] = topics.availability()
        conf["payload_available"] = ONLINE
        conf["payload_not_available"] = OFFLINE
        for key, value in (
            ("payload_on", self.payload_on),
            ("payload_off", self.payload_off),
            ("state_on", self.state_on),
            ("state_off", self.state_off),
            ("unit_of_measurement", self.unit),
            ("device_class", self.device_class),
            ("state_class", self.state_class),
            ("icon", self.icon),
        ):
            if value is not None:
                conf[key] = value
        conf["device"] = identity.device_block()
        return conf

    def message(self, topics: TopicBuilder, identity: DeviceIdentity) -> OutboundMessage:
        payload = json.dumps(self.config(topics, identity), separators=(",", ":"), ensure_ascii=False)
        return OutboundMessage(self.config_topic(topics, identity), payload, True)


def _sensor(object_id, name, state_topic, **kw) -> EntityDescriptor:
    return EntityDescriptor(SENSOR, object_id, name, state_topic, **kw)


def _binary(object_id, name, state_topic, icon, on="1", off="0") -> EntityDescriptor:
    return EntityDescriptor(BINARY_SENSOR, object_id, name, state_topic, icon=icon, payload_on=on, payload_off=off)


def catalog_entities(identity: DeviceIdentity, topics: TopicBuilder) -> List[EntityDescriptor]:
    """Static entity set for one printer, in publish order."""
    d = topics.data
    ents = []

    for object_id, name, sub in (
        ("nozzle_temp_current", "Nozzle Temperature", "temperature/nozzle/current"),
        ("nozzle_temp_target", "Nozzle Target Temperature", "temperature/nozzle/target"),
        ("bed_temp_current", "Bed Temperature", "temperature/bed0/current"),
        ("bed_temp_target", "Bed Target Temperature", "temperature/bed0/target"),
    ):
        ents.append(_sensor(object_id, name, d(sub), unit="°C", device_class="temperature",
                            state_class="measurement", icon="mdi:thermometer"))

    ents.append(_sensor("printer_status", "Printer Status", d("printer_status"), icon="mdi:printer-3d"))

    for object_id, name in (
        ("model_fan_pct", "Model Fan Speed"),
        ("auxiliary_fan_pct", "Auxiliary Fan Speed"),
        ("case_fan_pct", "Case Fan Speed"),
    ):
        ents.append(_sensor(object_id, name, d(object_id), unit="%", state_class="measurement", icon="mdi:fan"))

    ents.append(_sensor("print_progress", "Print Progress", d("job/progress"), unit="%",
                        state_class="measurement", icon="mdi:percent"))
    ents.append(_sensor("feed_state", "Feed State", d("feed_state"), icon="mdi:printer-3d-nozzle"))

    ents.append(_binary("printing", "Printing", d("printing"), "mdi:printer-3d", on="true", off="false"))
    ents.append(_binary("part_fan", "Part Cooling Fan", d("fan"), "mdi:fan"))

    ents.append(EntityDescriptor(
        SWITCH, "light", "Light", topics.light_state(),
        command_topic=topics.light_command(),
        payload_on="1", payload_off="0", state_on="1", state_off="0",
        icon="mdi:lightbulb",
    ))

    if identity.printer_address:
        ents.append(_sensor("camera_stream_url", "Camera Stream URL", topics.camera_stream_url(), icon="mdi:video"))
        ents.append(_binary("video_stream", "Camera Stream Active", d("video"), "mdi:video"))
    return ents


def camera_stream_url(identity: DeviceIdentity) -> str:
    return f"http://{identity.printer_address}:8080/?action=stream"


# [BRIDGE DOC] Full retained discovery set for one printer.
def build_catalog(identity: DeviceIdentity, topics: TopicBuilder) -> List[OutboundMessage]:
    """
    Descriptors for temperatures (x4), status, fans (x3), progress, feed state,
    printing, part fan and the light switch. With a known printer address the
    camera stream URL sensor, its value (published once, retained) and the
    video activity sensor are added.
    """
    out = []
    for ent in catalog_entities(identity, topics):
        out.append(ent.message(topics, identity))
        if ent.object_id == "camera_stream_url":
            out.append(OutboundMessage(topics.camera_stream_url(), camera_stream_url(identity), True))
    return out


def build_cleanup(identity: DeviceIdentity, topics: TopicBuilder) -> List[OutboundMessage]:
    """Empty retained payloads for deprecated entities not in the current catalog."""
    current = {ent.config_topic(topics, identity) for ent in catalog_entities(identity, topics)}
    out = []
    for component, object_id in DEPRECATED_ENTITIES:
        topic = topics.discovery(component, identity.id, object_id)
        if topic not in current:
            out.append(OutboundMessage(topic, "", True))
    return out


def build_cfs_descriptors(identity: DeviceIdentity, topics: TopicBuilder, box: int) -> List[OutboundMessage]:
    """Humidity and temperature sensors for one CFS box."""
    ents = [
        _sensor(f"cfs_{box}_humidity", f"CFS {box} Humidity", topics.data(f"cfs/{box}/humidity"),
                unit="%", device_class="humidity", state_class="measurement", icon="mdi:water-percent"),
        _sensor(f"cfs_{box}_temperature", f"CFS {box} Temperature", topics.data(f"cfs/{box}/temperature"),
                unit="°C", device_class="temperature", state_class="measurement", icon="mdi:thermometer"),
    ]
    return [ent.message(topics, identity) for ent in ents]


def purge_messages(device_id: str, topics: TopicBuilder) -> List[OutboundMessage]:
    """Delete every entity this bridge may ever have announced for device_id."""
    return [
        OutboundMessage(topics.discovery(component, device_id, entity_id), "", True)
        for component in COMPONENTS
        for entity_id in KNOWN_ENTITY_IDS
    ]
