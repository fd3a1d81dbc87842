from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from formproxy.storage import MessagePackStore

MAX_LOG_ROWS = 2000


class LoggerService:
    def __init__(self, store: MessagePackStore, *, echo: bool = True) -> None:
        self.store = store
        self.echo = echo
        self._listeners: list[Callable[[dict[str, object]], None]] = []

    def subscribe(self, listener: Callable[[dict[str, object]], None]) -> None:
        self._listeners.append(listener)

    def log(self, event: str, **data: object) -> None:
        row = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "event": event,
            "data": {key: _packable(value) for key, value in data.items()},
        }
        logs = self.store.data.setdefault("logs", [])
        logs.append(row)
        if len(logs) > MAX_LOG_ROWS:
            del logs[: len(logs) - MAX_LOG_ROWS]
        self.store.touch()
        if self.echo:
            print(f"[{row['ts']}] {event} {row['data']}")
        for listener in self._listeners:
            try:
                listener(row)
            except Exception:  # noqa: BLE001
                continue

    def recent(self, event_prefix: str = "", limit: int = 50) -> list[dict[str, object]]:
        rows = [row for row in self.store.data.get("logs", []) if str(row.get("event", "")).startswith(event_prefix)]
        return rows[-limit:]


def _packable(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [_packable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _packable(item) for key, item in value.items()}
    return str(value)
