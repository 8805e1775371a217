#!/usr/bin/env python3
"""Delete every Home Assistant discovery entity the bridge may have created for a device.

Usage: python tools/purge_device.py <device_id>
Broker settings come from the usual CREALITY_MQTT_* variables.
The id is normalised like the bridge does it (lowercase, "-" and " " become "_"),
so "K1-Max" purges "k1_max".
"""
import sys

from creality_bridge import log
from creality_bridge.bridge import connect_mqtt, make_mqtt_client, purge_device
from creality_bridge.config import load_config
from creality_bridge.discovery import sanitize_device_id
from creality_bridge.errors import ConfigError
from creality_bridge.gateway import PublishGateway
from creality_bridge.topics import TopicBuilder


def main():
    if len(sys.argv) != 2:
        print('Usage: purge_device.py <device_id>  (id is lowercased, "-" and " " become "_")', file=sys.stderr)
        sys.exit(2)
    device_id = sanitize_device_id(sys.argv[1])
    try:
        cfg = load_config(require_ws_url=False)
        client = make_mqtt_client(cfg, suffix="_purge")
    except ConfigError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    log.set_level(cfg.log_level)

    try:
        connect_mqtt(client, cfg)
    except (OSError, ConnectionError) as e:
        log.error("Failed to connect to MQTT broker:", e)
        sys.exit(1)
    try:
        # retained deletes are never throttled
        gateway = PublishGateway(client)
        n = purge_device(gateway, TopicBuilder(cfg.base_topic, cfg.discovery_prefix), device_id)
    finally:
        client.disconnect()
        client.loop_stop()
    print('Deleted', n, 'entities for', device_id)


if __name__ == '__main__':
    main()
