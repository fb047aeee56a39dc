"""ID helpers."""

from __future__ import annotations

import itertools
import secrets
import time

_COUNTER = itertools.count()


def new_id(prefix: str | None = None) -> str:
    """Generate a roughly time-ordered identifier with an optional prefix.

    Layout: 12 hex digits of epoch milliseconds, 6 of a process-local counter,
    8 random. Ids minted by one process sort in creation order.
    """
    millis = int(time.time() * 1000) & 0xFFFFFFFFFFFF
    sequence = next(_COUNTER) & 0xFFFFFF
    base = f"{millis:012x}{sequence:06x}{secrets.token_hex(4)}"
    return f"{prefix}_{base}" if prefix else base
