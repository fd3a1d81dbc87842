from __future__ import annotations

import os
import time
import uuid


def new_row_id(now_ms: int | None = None) -> str:
    """
    Build a UUIDv7 string: 48-bit unix millisecond timestamp followed by random bits.

    Rows created later sort after rows created earlier, which keeps the msgpack
    tables in insertion order when listed by id.
    """

    ts_ms = int(now_ms if now_ms is not None else time.time_ns() // 1_000_000) & ((1 << 48) - 1)
    rand = int.from_bytes(os.urandom(10), "big")
    rand_a = rand >> 68 & 0xFFF
    rand_b = rand & ((1 << 62) - 1)
    value = (ts_ms << 80) | (0x7 << 76) | (rand_a << 64) | (0b10 << 62) | rand_b
    return str(uuid.UUID(int=value))
