from __future__ import annotations

import io
from typing import Any

import discord

from formproxy.errors import RemoteForbiddenError, RemoteNotFoundError, TransportError
from formproxy.models import ReplyTarget
from formproxy.ports import AllowedMentions, EditPayload, ProxyAttachment, SendPayload, SendResult

WEBHOOK_NAME = "formproxy"


def to_discord_mentions(mentions: AllowedMentions) -> discord.AllowedMentions:
    users: bool | list[discord.Object] = "users" in mentions.parse or [discord.Object(id=uid) for uid in mentions.users]
    roles: bool | list[discord.Object] = "roles" in mentions.parse or [discord.Object(id=rid) for rid in mentions.roles]
    return discord.AllowedMentions(
        everyone="everyone" in mentions.parse,
        users=users,
        roles=roles,
        replied_user=mentions.replied_user,
    )


def to_discord_files(attachments: list[ProxyAttachment] | None) -> list[discord.File]:
    return [discord.File(io.BytesIO(item.data), filename=item.name, spoiler=item.spoiler) for item in attachments or []]


class DiscordChannelProxy:
    """Sends, edits and deletes messages in one text channel through a bot-owned webhook."""

    def __init__(self, client: discord.Client, channel: discord.TextChannel) -> None:
        self.client = client
        self.channel = channel

    async def send(self, payload: SendPayload, reply_to: ReplyTarget | None = None) -> SendResult:
        webhook = await self._resolve_webhook()
        kwargs: dict[str, Any] = {
            "content": payload.content,
            "username": payload.username,
            "allowed_mentions": to_discord_mentions(payload.allowed_mentions),
            "wait": True,
        }
        if payload.avatar_url:
            kwargs["avatar_url"] = payload.avatar_url
        if payload.attachments:
            kwargs["files"] = to_discord_files(payload.attachments)
        if payload.suppress_embeds:
            kwargs["suppress_embeds"] = True
        try:
            message = await webhook.send(**kwargs)
        except discord.HTTPException as exc:
            raise _translate(exc) from exc
        return SendResult(webhook_id=int(webhook.id), token=str(webhook.token or ""), message_id=int(message.id))

    async def edit(self, webhook_id: int, webhook_token: str, message_id: int, payload: EditPayload) -> None:
        webhook = discord.Webhook.partial(int(webhook_id), webhook_token, client=self.client)
        kwargs: dict[str, Any] = {
            "content": payload.content,
            "allowed_mentions": to_discord_mentions(payload.allowed_mentions),
        }
        if payload.attachments:
            kwargs["attachments"] = to_discord_files(payload.attachments)
        try:
            await webhook.edit_message(int(message_id), **kwargs)
        except discord.HTTPException as exc:
            raise _translate(exc) from exc

    async def delete(self, webhook_id: int, webhook_token: str | None, message_id: int) -> None:
        try:
            if webhook_token:
                webhook = discord.Webhook.partial(int(webhook_id), webhook_token, client=self.client)
                await webhook.delete_message(int(message_id))
            else:
                await self.channel.get_partial_message(int(message_id)).delete()
        except discord.HTTPException as exc:
            raise _translate(exc) from exc

    async def _resolve_webhook(self) -> discord.Webhook:
        me = self.client.user
        try:
            for webhook in await self.channel.webhooks():
                if webhook.token and (me is None or (webhook.user is not None and webhook.user.id == me.id)):
                    return webhook
            return await self.channel.create_webhook(name=WEBHOOK_NAME, reason="Form proxy webhook")
        except discord.HTTPException as exc:
            raise _translate(exc) from exc


def _translate(exc: discord.HTTPException) -> TransportError:
    if isinstance(exc, discord.NotFound):
        return RemoteNotFoundError(str(exc))
    if isinstance(exc, discord.Forbidden):
        return RemoteForbiddenError(str(exc))
    return TransportError(str(exc))
