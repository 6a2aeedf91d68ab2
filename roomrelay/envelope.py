from __future__ import annotations

import math
import time

from .constants import F_TYPE


def now_ms() -> int:
    return int(time.time() * 1000)


def make_event(event_type: str, **fields) -> dict:
    env: dict[str, object] = {F_TYPE: str(event_type)}
    env.update(fields)
    return env


def validate_envelope(env) -> None:
    """Check that a decoded frame is a structured envelope.

    Only the container shape is checked here. Per-type field validation is
    done by the router, which drops malformed requests silently.
    """
    if not isinstance(env, dict):
        raise TypeError("envelope must be a map")

    for k in env.keys():
        if not isinstance(k, str):
            raise TypeError("envelope keys must be strings")


def envelope_type(env: dict) -> str | None:
    t = env.get(F_TYPE)
    if not t:
        return None
    if isinstance(t, str):
        return t
    # Non-string discriminators are reported as unknown types.
    return repr(t)


def str_field(env: dict, key: str) -> str | None:
    v = env.get(key)
    return v if isinstance(v, str) else None


def bool_field(env: dict, key: str) -> bool | None:
    v = env.get(key)
    return v if isinstance(v, bool) else None


def number_field(env: dict, key: str) -> int | float | None:
    v = env.get(key)
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float) and math.isfinite(v):
        return v
    return None
