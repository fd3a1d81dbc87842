from __future__ import annotations

import asyncio
from types import SimpleNamespace

import discord

from formproxy.adapters.discord_proxy import DiscordChannelProxy, _translate, to_discord_files, to_discord_mentions
from formproxy.errors import RemoteForbiddenError, RemoteNotFoundError, TransportError
from formproxy.ports import AllowedMentions, ProxyAttachment, SendPayload
from formproxy.utils.discord_utils import capabilities_from_permissions


def _http_error(cls: type[discord.HTTPException], status: int) -> discord.HTTPException:
    return cls(SimpleNamespace(status=status, reason="nope"), "nope")


def test_translate_maps_http_errors() -> None:
    assert isinstance(_translate(_http_error(discord.NotFound, 404)), RemoteNotFoundError)
    assert isinstance(_translate(_http_error(discord.Forbidden, 403)), RemoteForbiddenError)
    other = _translate(_http_error(discord.HTTPException, 500))
    assert type(other) is TransportError


def test_scoped_mentions_become_objects() -> None:
    mentions = to_discord_mentions(AllowedMentions(users=(1, 2), roles=(9,)))

    assert mentions.everyone is False
    assert [item.id for item in mentions.users] == [1, 2]
    assert [item.id for item in mentions.roles] == [9]
    assert mentions.replied_user is False


def test_parse_groups_become_flags() -> None:
    mentions = to_discord_mentions(AllowedMentions(parse=("users", "roles", "everyone")))

    assert mentions.everyone is True
    assert mentions.users is True
    assert mentions.roles is True


def test_attachments_become_files() -> None:
    files = to_discord_files([ProxyAttachment(name="cat.png", data=b"meow", spoiler=True)])

    assert len(files) == 1
    assert files[0].filename == "SPOILER_cat.png"
    assert to_discord_files(None) == []


class StubWebhook:
    def __init__(self, owner_id: int, token: str | None = "tok") -> None:
        self.id = 555
        self.token = token
        self.user = SimpleNamespace(id=owner_id)
        self.sent: list[dict[str, object]] = []

    async def send(self, **kwargs: object) -> SimpleNamespace:
        self.sent.append(kwargs)
        return SimpleNamespace(id=9001)


class StubChannel:
    def __init__(self, webhooks: list[StubWebhook]) -> None:
        self._webhooks = webhooks
        self.created: list[str] = []

    async def webhooks(self) -> list[StubWebhook]:
        return self._webhooks

    async def create_webhook(self, *, name: str, reason: str) -> StubWebhook:
        self.created.append(name)
        return StubWebhook(owner_id=1)


def test_send_reuses_bot_webhook_and_omits_missing_avatar() -> None:
    foreign = StubWebhook(owner_id=2)
    own = StubWebhook(owner_id=1)
    channel = StubChannel([foreign, own])
    proxy = DiscordChannelProxy(SimpleNamespace(user=SimpleNamespace(id=1)), channel)

    result = asyncio.run(proxy.send(SendPayload(username="Neoli", content="hi")))

    assert (result.webhook_id, result.token, result.message_id) == (555, "tok", 9001)
    assert foreign.sent == []
    assert "avatar_url" not in own.sent[0]
    assert own.sent[0]["username"] == "Neoli"
    assert channel.created == []


def test_send_creates_webhook_when_none_usable() -> None:
    channel = StubChannel([StubWebhook(owner_id=1, token=None)])
    proxy = DiscordChannelProxy(SimpleNamespace(user=SimpleNamespace(id=1)), channel)

    asyncio.run(proxy.send(SendPayload(username="Neoli", content="hi", avatar_url="https://example.com/a.png")))

    assert channel.created == ["formproxy"]


def test_capabilities_follow_channel_permissions() -> None:
    caps = capabilities_from_permissions(discord.Permissions(view_channel=True, send_messages=True, manage_messages=True))

    assert caps.view_channel and caps.send_messages and caps.manage_messages
    assert not caps.attach_files
    assert not caps.mention_everyone
