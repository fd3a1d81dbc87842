from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import msgpack


DEFAULT_STORE: dict[str, Any] = {
    "meta": {"version": 1},
    "forms": {},
    "aliases": {},
    "proxied_messages": {},
    "logs": [],
}


class MessagePackStore:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._dirty = False
        self.data: dict[str, Any] = _clone_defaults()

    async def load(self) -> None:
        async with self._lock:
            if not self.path.exists():
                self.data = _clone_defaults()
                await self._save_unlocked()
                return
            raw = self.path.read_bytes()
            self.data = msgpack.unpackb(raw, raw=False)
            self._ensure_schema()

    async def autosave_loop(self, interval_sec: float = 5.0) -> None:
        while True:
            await asyncio.sleep(interval_sec)
            if self._dirty:
                await self.save()

    async def save(self) -> None:
        async with self._lock:
            await self._save_unlocked()

    async def _save_unlocked(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        packed = msgpack.packb(self.data, use_bin_type=True)
        tmp.write_bytes(packed)
        tmp.replace(self.path)
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def touch(self) -> None:
        self._dirty = True

    def table(self, name: str) -> dict[str, dict[str, Any]]:
        node = self.data.setdefault(name, {})
        if not isinstance(node, dict):
            self.data[name] = {}
            self.touch()
            node = self.data[name]
        return node

    def _ensure_schema(self) -> None:
        defaults = _clone_defaults()
        for key, value in defaults.items():
            if key not in self.data:
                self.data[key] = value
        self._dirty = True


def _clone_defaults() -> dict[str, Any]:
    return msgpack.unpackb(msgpack.packb(DEFAULT_STORE, use_bin_type=True), raw=False)
