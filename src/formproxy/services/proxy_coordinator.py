from __future__ import annotations

from formproxy.errors import AuthorizationError, NotFoundError
from formproxy.models import Form, ProxiedMessage, ReplyTarget, utc_now_iso
from formproxy.ports import (
    DEFAULT_ALLOWED_MENTIONS,
    AllowedMentions,
    ChannelProxyPort,
    EditPayload,
    FormStore,
    LinkageStore,
    ProxyAttachment,
    SendPayload,
    SendResult,
)
from formproxy.services.logger_service import LoggerService
from formproxy.services.reply_style import MESSAGE_LIMIT, assemble_content, reply_header_for
from formproxy.utils.ids import new_row_id


class ProxyCoordinator:
    def __init__(self, forms: FormStore, linkages: LinkageStore, logger: LoggerService) -> None:
        self.forms = forms
        self.linkages = linkages
        self.logger = logger

    async def coordinate(
        self,
        actor_user_id: int,
        form_id: str,
        channel_id: int,
        guild_id: int,
        content: str,
        channel_port: ChannelProxyPort,
        attachments: list[ProxyAttachment] | None = None,
        reply_to: ReplyTarget | None = None,
        prefetched_form: Form | None = None,
        *,
        original_message_id: int | None = None,
        allowed_mentions: AllowedMentions | None = None,
        suppress_embeds: bool = False,
    ) -> SendResult:
        """
        Post `content` as a form and record the linkage.

        The port is called exactly once. Nothing is recorded if the send fails;
        if recording fails after a successful send the error propagates and the
        sent message is left in place.
        """

        ctx = {"user_id": actor_user_id, "form_id": form_id, "channel_id": channel_id, "guild_id": guild_id}
        self.logger.log("proxy.send_start", **ctx)
        try:
            form = prefetched_form if prefetched_form is not None else await self.forms.get_by_id(form_id)
            if form is None:
                raise NotFoundError(f"Form {form_id} not found")
            payload = self._build_payload(form, content, attachments, reply_to, allowed_mentions, suppress_embeds)
            result = await channel_port.send(payload, reply_to)
            await self.linkages.insert(
                ProxiedMessage(
                    id=new_row_id(),
                    user_id=actor_user_id,
                    form_id=form.id,
                    guild_id=guild_id,
                    channel_id=channel_id,
                    webhook_id=result.webhook_id,
                    webhook_token=result.token,
                    message_id=result.message_id,
                    original_message_id=original_message_id,
                    created_at=utc_now_iso(),
                )
            )
        except Exception as exc:
            self.logger.log("proxy.send_error", error=str(exc)[:300], error_type=type(exc).__name__, **ctx)
            raise
        self.logger.log("proxy.send_success", message_id=result.message_id, webhook_id=result.webhook_id, **ctx)
        return result

    async def edit(self, actor_user_id: int, message_id: int, content: str, channel_port: ChannelProxyPort) -> ProxiedMessage:
        row = await self.linkages.find_by_message_id(message_id)
        if row is None:
            raise NotFoundError(f"Proxied message {message_id} not found")
        if row.user_id != actor_user_id:
            raise AuthorizationError("Only the original author can edit a proxied message")
        await channel_port.edit(row.webhook_id, row.webhook_token, row.message_id, EditPayload(content=content))
        self.logger.log("proxy.edit", user_id=actor_user_id, message_id=message_id, form_id=row.form_id)
        return row

    def _build_payload(
        self,
        form: Form,
        content: str,
        attachments: list[ProxyAttachment] | None,
        reply_to: ReplyTarget | None,
        allowed_mentions: AllowedMentions | None,
        suppress_embeds: bool,
    ) -> SendPayload:
        mentions = allowed_mentions or DEFAULT_ALLOWED_MENTIONS
        header = reply_header_for(reply_to) if reply_to is not None else None
        full_length = len(content) + (len(header) + 1 if header else 0)
        content = assemble_content(content, header)
        if len(content) < full_length:
            self.logger.log("proxy.truncated", form_id=form.id, length=full_length, limit=MESSAGE_LIMIT)
        # Discord rejects an explicit user list alongside parse=users.
        if reply_to is not None and reply_to.author_id is not None and "users" not in mentions.parse:
            scoped = tuple(dict.fromkeys((*mentions.users, reply_to.author_id)))
            mentions = AllowedMentions(parse=mentions.parse, users=scoped, roles=mentions.roles)
        payload = SendPayload(username=form.name, content=content, allowed_mentions=mentions, suppress_embeds=suppress_embeds)
        if form.avatar_url:
            payload.avatar_url = form.avatar_url
        if attachments:
            payload.attachments = list(attachments)
        return payload
