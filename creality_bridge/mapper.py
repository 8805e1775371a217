""" Snapshot -> MQTT message mapping.

Two layers run on every snapshot:
- generic: each scalar key becomes `<base>/<snake_key>` (nested values and noisy keys skipped),
- derived: structured temperature, job, status and CFS box topics.

Both are emitted: `<base>/nozzle_temp` and `<base>/temperature/nozzle/current`
carry the same reading on purpose.
"""
import json
import posixpath
from typing import Any, Dict, List, Mapping, Optional

from .coerce import format_value, get_float, get_int, to_int
from .errors import SnapshotError
from .status import StatusTracker
from .topics import OutboundMessage

# Fields that change constantly and carry nothing useful for HA
NOISY_KEYS = frozenset({
    "videoElapseFrame",
    "videoElapseInterval",
    "video",
    "video1",
})

# snapshot key -> structured temperature sub-topic
TEMPERATURE_FIELDS = (
    ("nozzleTemp", "temperature/nozzle/current"),
    ("targetNozzleTemp", "temperature/nozzle/target"),
    ("bedTemp0", "temperature/bed0/current"),
    ("targetBedTemp0", "temperature/bed0/target"),
    ("boxTemp", "temperature/box/current"),
)


# [BRIDGE DOC] Decode one WebSocket frame into a snapshot dict.
def decode_snapshot(data) -> Dict[str, Any]:
    if isinstance(data, (bytes, bytearray)):
        try:
            data = bytes(data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise SnapshotError(f"frame is not UTF-8: {e}") from e
    try:
        msg = json.loads(data)
    except ValueError as e:
        raise SnapshotError(f"frame is not JSON: {e}") from e
    if not isinstance(msg, dict):
        raise SnapshotError(f"frame is a JSON {type(msg).__name__}, expected an object")
    return msg


# [BRIDGE DOC] camelCase / "Space Separated" -> snake_case topic suffix.
def normalise_key(key: str) -> str:
    key = key.strip().replace(" ", "_")
    out = []
    for i, ch in enumerate(key):
        if i > 0 and ch.isupper() and key[i - 1].islower():
            out.append("_")
        out.append(ch.lower())
    return "".join(out)


def map_fields(snapshot: Mapping[str, Any], base_topic: str) -> List[OutboundMessage]:
    out = []
    for key, raw in snapshot.items():
        if key in NOISY_KEYS or isinstance(raw, (dict, list)):
            continue
        out.append(OutboundMessage(f"{base_topic}/{normalise_key(key)}", format_value(raw)))
    return out


def build_temperature_messages(snapshot: Mapping[str, Any], base_topic: str) -> List[OutboundMessage]:
    out = []
    for key, sub in TEMPERATURE_FIELDS:
        v = get_float(snapshot, key)
        if v is not None:
            out.append(OutboundMessage(f"{base_topic}/{sub}", f"{v:.3f}"))
    return out


def simplify_file_name(full: str) -> str:
    """Last path segment of a printer file path, e.g.
    "/usr/data/printer_data/gcodes/a (1)_gcode.3mf/plate_4.gcode" -> "plate_4.gcode".
    """
    full = full.strip()
    if not full:
        return full
    full = full.replace("\\", "/")
    trimmed = full.rstrip("/")
    if not trimmed:
        return "/"
    return posixpath.basename(trimmed)


# [BRIDGE DOC] printing flag, job counters, file name and feed state.
def build_job_messages(snapshot: Mapping[str, Any], base_topic: str) -> List[OutboundMessage]:
    """
    Topics:
    - `<base>/printing`          "true"/"false" (always emitted)
    - `<base>/job/progress`      percent
    - `<base>/job/left_time`     seconds remaining
    - `<base>/job/job_time`      seconds elapsed
    - `<base>/job/layer/current`
    - `<base>/job/layer/total`   only when non-zero (0 means unknown)
    - `<base>/job/file_name`     last path segment of printFileName
    - `<base>/feed_state`        101=extruding, 102=done, ...
    """
    progress = get_int(snapshot, "printProgress")
    left = get_int(snapshot, "printLeftTime")
    job_time = get_int(snapshot, "printJobTime")
    layer = get_int(snapshot, "layer")
    total_layer = get_int(snapshot, "TotalLayer")

    printing = progress is not None and left is not None and progress > 0 and left > 0
    out = [OutboundMessage(f"{base_topic}/printing", "true" if printing else "false")]

    for sub, v in (
        ("job/progress", progress),
        ("job/left_time", left),
        ("job/job_time", job_time),
        ("job/layer/current", layer),
    ):
        if v is not None:
            out.append(OutboundMessage(f"{base_topic}/{sub}", str(v)))
    if total_layer:
        out.append(OutboundMessage(f"{base_topic}/job/layer/total", str(total_layer)))

    raw = snapshot.get("printFileName")
    if isinstance(raw, str):
        short = simplify_file_name(raw)
        if short:
            out.append(OutboundMessage(f"{base_topic}/job/file_name", short))

    feed_state = get_int(snapshot, "feedState")
    if feed_state is not None:
        out.append(OutboundMessage(f"{base_topic}/feed_state", str(feed_state)))
    return out


def build_state_messages(snapshot: Mapping[str, Any], base_topic: str,
                         tracker: StatusTracker) -> List[OutboundMessage]:
    out = []
    status, publish = tracker.evaluate(snapshot)
    if publish:
        out.append(OutboundMessage(f"{base_topic}/printer_status", status))
    tf = get_int(snapshot, "tfCard")
    if tf is not None:
        out.append(OutboundMessage(f"{base_topic}/tf_card_present", "true" if tf == 1 else "false"))
    return out


def box_id(snapshot: Mapping[str, Any]) -> Optional[int]:
    """CFS box id from `boxState.id`; None without a boxState record or id. A null id is box 0."""
    box = snapshot.get("boxState")
    if not isinstance(box, dict) or "id" not in box:
        return None
    return to_int(box["id"])


# [BRIDGE DOC] Creality Filament System box: {"boxState": {"id": 1, "state": 1, "humidity": 28.0, "temp": 23.0}}
def build_box_messages(snapshot: Mapping[str, Any], base_topic: str) -> List[OutboundMessage]:
    bid = box_id(snapshot)
    if bid is None:
        return []
    box = snapshot["boxState"]
    prefix = f"{base_topic}/cfs/{bid}"
    out = []
    if "humidity" in box:
        out.append(OutboundMessage(f"{prefix}/humidity", format_value(box["humidity"])))
    if "temp" in box:
        out.append(OutboundMessage(f"{prefix}/temperature", format_value(box["temp"])))
    if "state" in box:
        out.append(OutboundMessage(f"{prefix}/state", str(to_int(box["state"]))))
    return out


class Mapper:
    """Maps snapshots for one base topic; owns the status hysteresis state."""

    def __init__(self, base_topic: str, tracker: Optional[StatusTracker] = None):
        self.base_topic = base_topic
        self.tracker = tracker or StatusTracker()

    def map(self, snapshot: Mapping[str, Any]) -> List[OutboundMessage]:
        base = self.base_topic
        out = map_fields(snapshot, base)
        out += build_temperature_messages(snapshot, base)
        out += build_job_messages(snapshot, base)
        out += build_state_messages(snapshot, base, self.tracker)
        out += build_box_messages(snapshot, base)
        return out
