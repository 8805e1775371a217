#!/usr/bin/env python3
"""Connect to the printer, print the device identity from the first snapshot and exit.

Usage: CREALITY_WS_URL=ws://192.168.1.50:9999/ python tools/device_info.py
"""
import asyncio
import json
import sys

from creality_bridge.config import load_config
from creality_bridge.discovery import extract_device_identity
from creality_bridge.errors import ConfigError, SessionError, SnapshotError
from creality_bridge.mapper import decode_snapshot
from creality_bridge.session import IngestionSession


def main():
    try:
        cfg = load_config()
    except ConfigError as e:
        print(e, file=sys.stderr)
        sys.exit(1)

    found = {}
    session = None

    def on_frame(data):
        if found:
            return
        try:
            snapshot = decode_snapshot(data)
        except SnapshotError as e:
            print("skipping frame:", e, file=sys.stderr)
            return
        ident = extract_device_identity(snapshot, cfg.device_name, cfg.printer_address)
        found.update(id=ident.id, name=ident.name, model=ident.model,
                     printer_address=ident.printer_address, keys=sorted(snapshot))
        session.stop_threadsafe()

    session = IngestionSession(cfg.ws_url, on_frame, retry_delay=cfg.retry_delay)
    try:
        asyncio.run(session.run())
    except SessionError as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    print(json.dumps(found, indent=2, ensure_ascii=False))


if __name__ == '__main__':
    main()
