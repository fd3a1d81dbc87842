from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Literal

AliasKind = Literal["prefix", "pattern"]


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@dataclass
class Form:
    id: str
    user_id: int
    name: str
    avatar_url: str | None = None
    created_at: str = ""

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_row(row: dict[str, Any]) -> "Form":
        return Form(
            id=str(row["id"]),
            user_id=int(row["user_id"]),
            name=str(row.get("name", "")),
            avatar_url=row.get("avatar_url") or None,
            created_at=str(row.get("created_at", "")),
        )


@dataclass
class Alias:
    id: str
    user_id: int
    form_id: str
    trigger_raw: str
    trigger_norm: str
    kind: AliasKind
    created_at: str = ""

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_row(row: dict[str, Any]) -> "Alias":
        kind = str(row.get("kind", "prefix"))
        return Alias(
            id=str(row["id"]),
            user_id=int(row["user_id"]),
            form_id=str(row["form_id"]),
            trigger_raw=str(row.get("trigger_raw", "")),
            trigger_norm=str(row.get("trigger_norm", "")),
            kind="pattern" if kind == "pattern" else "prefix",
            created_at=str(row.get("created_at", "")),
        )


@dataclass(frozen=True)
class MatchResult:
    alias: Alias
    rendered_text: str


@dataclass
class ProxiedMessage:
    id: str
    user_id: int
    form_id: str
    guild_id: int
    channel_id: int
    webhook_id: int
    webhook_token: str
    message_id: int
    original_message_id: int | None = None
    created_at: str = ""

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_row(row: dict[str, Any]) -> "ProxiedMessage":
        original = row.get("original_message_id")
        return ProxiedMessage(
            id=str(row["id"]),
            user_id=int(row["user_id"]),
            form_id=str(row["form_id"]),
            guild_id=int(row["guild_id"]),
            channel_id=int(row["channel_id"]),
            webhook_id=int(row["webhook_id"]),
            webhook_token=str(row.get("webhook_token", "")),
            message_id=int(row["message_id"]),
            original_message_id=int(original) if original else None,
            created_at=str(row.get("created_at", "")),
        )


@dataclass(frozen=True)
class ReplyTarget:
    guild_id: int
    channel_id: int
    message_id: int
    author_id: int | None = None
    author_name: str | None = None
    content: str = ""
    has_embeds: bool = False
    has_attachments: bool = False
    url: str | None = None
