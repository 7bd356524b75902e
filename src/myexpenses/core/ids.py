"""Canonical ID and timestamp factories.

All modules import from here instead of defining local _uuid()/_now() copies.

ID Scheme
---------
Entity identifiers are UUID version 7 (RFC 9562): the leading 48 bits are
the unix timestamp in milliseconds, so ids sort by creation time and keep
B-tree inserts append-mostly.  Within a single millisecond a 12-bit
counter (``rand_a``) keeps ids from one process strictly increasing.

Timestamp Rule
--------------
All timestamps are ``datetime`` with ``tzinfo=timezone.utc``, never naive.
"""

from __future__ import annotations

import os
import threading
import time
import uuid
from datetime import datetime, timezone

_COUNTER_MAX = 0xFFF

_lock = threading.Lock()
_last_ms = 0
_counter = 0


def _next_timestamp_and_counter() -> tuple[int, int]:
    global _last_ms, _counter  # noqa: PLW0603

    with _lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _last_ms:
            _last_ms = now_ms
            # Random start with the top bit clear leaves headroom for
            # increments inside the same millisecond.
            _counter = int.from_bytes(os.urandom(2), "big") & 0x7FF
        else:
            # Same millisecond, or the wall clock stepped backwards.
            _counter += 1
            if _counter > _COUNTER_MAX:
                _last_ms += 1
                _counter = 0
        return _last_ms, _counter


def new_id() -> uuid.UUID:
    """Generate a new time-ordered UUID v7.  Use for all entity IDs."""
    unix_ms, counter = _next_timestamp_and_counter()
    rand_b = int.from_bytes(os.urandom(8), "big") & ((1 << 62) - 1)

    value = (unix_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= counter << 64
    value |= 0b10 << 62
    value |= rand_b
    return uuid.UUID(int=value)


def id_timestamp(value: uuid.UUID) -> datetime:
    """Return the creation time embedded in a UUID v7.

    Raises
    ------
    ValueError
        If *value* is not a version 7 UUID.
    """
    if value.version != 7:
        raise ValueError(f"Expected a UUID v7, got version {value.version}")
    unix_ms = value.int >> 80
    return datetime.fromtimestamp(unix_ms / 1000, tz=timezone.utc)


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)
