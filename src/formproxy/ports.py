from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from formproxy.models import Alias, AliasKind, Form, ProxiedMessage, ReplyTarget


@dataclass(frozen=True)
class AllowedMentions:
    parse: tuple[str, ...] = ()
    users: tuple[int, ...] = ()
    roles: tuple[int, ...] = ()
    replied_user: bool = False


DEFAULT_ALLOWED_MENTIONS = AllowedMentions()


@dataclass(frozen=True)
class ProxyAttachment:
    name: str
    data: bytes
    spoiler: bool = False


@dataclass
class SendPayload:
    username: str
    content: str
    allowed_mentions: AllowedMentions = DEFAULT_ALLOWED_MENTIONS
    avatar_url: str | None = None
    attachments: list[ProxyAttachment] | None = None
    suppress_embeds: bool = False


@dataclass
class EditPayload:
    content: str
    allowed_mentions: AllowedMentions = DEFAULT_ALLOWED_MENTIONS
    attachments: list[ProxyAttachment] | None = field(default=None)


@dataclass(frozen=True)
class SendResult:
    webhook_id: int
    token: str
    message_id: int


class ChannelProxyPort(Protocol):
    async def send(self, payload: SendPayload, reply_to: ReplyTarget | None = None) -> SendResult: ...

    async def edit(self, webhook_id: int, webhook_token: str, message_id: int, payload: EditPayload) -> None: ...

    async def delete(self, webhook_id: int, webhook_token: str | None, message_id: int) -> None:
        """Raise RemoteNotFoundError, RemoteForbiddenError or TransportError on failure."""
        ...


class AliasStore(Protocol):
    async def get_grouped_by_form(self, user_id: int) -> dict[str, list[Alias]]: ...

    async def get_by_form(self, form_id: str) -> list[Alias]: ...

    async def get_by_id(self, alias_id: str, user_id: int) -> Alias | None: ...

    async def create(self, user_id: int, form_id: str, trigger_raw: str, trigger_norm: str, kind: AliasKind) -> Alias: ...

    async def delete(self, alias_id: str) -> None: ...

    async def find_collision(self, user_id: int, trigger_norm: str) -> Alias | None: ...


class FormStore(Protocol):
    async def get_by_id(self, form_id: str) -> Form | None: ...

    async def list_by_user(self, user_id: int) -> list[Form]: ...

    async def create(self, user_id: int, name: str, avatar_url: str | None = None) -> Form: ...

    async def update(self, form_id: str, *, name: str | None = None, avatar_url: str | None = None) -> Form: ...

    async def delete(self, form_id: str) -> int: ...


class LinkageStore(Protocol):
    async def insert(self, record: ProxiedMessage) -> None: ...

    async def find_by_message_id(self, message_id: int) -> ProxiedMessage | None: ...

    async def delete_by_row_id(self, row_id: str) -> bool: ...
