from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


TRASH_EMOJI = "\U0001F5D1️"


@dataclass(frozen=True)
class Settings:
    discord_token: str
    command_prefix: str
    store_path: Path
    alias_cache_ttl_sec: float = 300.0
    delete_reaction: str = TRASH_EMOJI
    delete_original: bool = True

    @staticmethod
    def load(path: Path = Path("passwords.txt")) -> "Settings":
        values = _parse_passwords_file(path)
        token = values.get("DISCORD_TOKEN", "").strip()
        command_prefix = values.get("COMMAND_PREFIX", "!")
        store_path = Path(values.get("STORE_PATH", "data/formproxy.msgpack"))
        try:
            alias_cache_ttl_sec = float(values.get("ALIAS_CACHE_TTL_SEC", "300"))
        except ValueError as exc:
            raise RuntimeError("ALIAS_CACHE_TTL_SEC must be a number.") from exc
        delete_reaction = values.get("DELETE_REACTION", TRASH_EMOJI).strip() or TRASH_EMOJI
        delete_original = values.get("DELETE_ORIGINAL", "true").strip().lower() not in {"0", "false", "no", "off"}
        if not token:
            raise RuntimeError("DISCORD_TOKEN is required in passwords.txt.")
        return Settings(
            discord_token=token,
            command_prefix=command_prefix,
            store_path=store_path,
            alias_cache_ttl_sec=max(0.0, alias_cache_ttl_sec),
            delete_reaction=delete_reaction,
            delete_original=delete_original,
        )


def _parse_passwords_file(path: Path) -> dict[str, str]:
    if not path.exists():
        raise RuntimeError("passwords.txt not found. Copy passwords.example.txt to passwords.txt and fill values.")
    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values
