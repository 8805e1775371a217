""" Stderr logging for the bridge.

Every line is prefixed with `[BRIDGE]` and a level tag, e.g.
`[BRIDGE] WARN MQTT not connected, dropping creality/printer/job/progress`.
"""
import sys

LEVELS = {"debug": 10, "info": 20, "warn": 30, "warning": 30, "error": 40}

_level = LEVELS["info"]


def set_level(name) -> bool:
    """Set the minimum level by name. Returns False for unknown names (level unchanged)."""
    global _level
    lv = LEVELS.get((name or "").strip().lower())
    if lv is None:
        return False
    _level = lv
    return True


def enabled(name: str) -> bool:
    return LEVELS[name] >= _level


def _emit(tag, *a):
    print("[BRIDGE]", tag, *a, file=sys.stderr, flush=True)


# debug-only
def log(*a):
    if enabled("debug"):
        _emit("DEBUG", *a)


def info(*a):
    if enabled("info"):
        _emit("INFO", *a)


def warn(*a):
    if enabled("warn"):
        _emit("WARN", *a)


def error(*a):
    if enabled("error"):
        _emit("ERROR", *a)
