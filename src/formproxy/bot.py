from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import discord
from discord.ext import commands

from formproxy.adapters.discord_proxy import DiscordChannelProxy
from formproxy.config import Settings
from formproxy.errors import AuthorizationError, FormProxyError, NotFoundError, ValidationError
from formproxy.models import ReplyTarget
from formproxy.ports import ChannelProxyPort, ProxyAttachment, SendResult
from formproxy.repositories import AliasRepo, FormRepo, ProxiedMessageRepo
from formproxy.services.alias_cache import AliasCache
from formproxy.services.alias_matcher import AliasMatcher
from formproxy.services.delete_service import REASON_NOT_FOUND, DeleteResult, DeleteService
from formproxy.services.identity_service import IdentityService
from formproxy.services.logger_service import LoggerService
from formproxy.services.permission_guard import ChannelContext, OutboundContent, evaluate
from formproxy.services.proxy_coordinator import ProxyCoordinator
from formproxy.storage import MessagePackStore
from formproxy.utils.discord_utils import capabilities_for, get_member


class FormProxyBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True
        intents.reactions = True
        super().__init__(command_prefix=settings.command_prefix, intents=intents, help_command=None)
        self.settings = settings
        self.store = MessagePackStore(settings.store_path)
        self.logger = LoggerService(self.store)
        self.form_repo = FormRepo(self.store)
        self.alias_repo = AliasRepo(self.store)
        self.linkage_repo = ProxiedMessageRepo(self.store)
        self.alias_cache = AliasCache(ttl_sec=settings.alias_cache_ttl_sec)
        self.matcher = AliasMatcher(self.alias_repo, self.alias_cache, self.logger)
        self.identity = IdentityService(self.form_repo, self.alias_repo, self.alias_cache, self.logger)
        self.coordinator = ProxyCoordinator(self.form_repo, self.linkage_repo, self.logger)
        self.deleter = DeleteService(self.linkage_repo, self.logger)
        self.started_at = datetime.now(tz=timezone.utc)
        self._autosave_task: asyncio.Task | None = None
        self._pending_deletions: set[tuple[int, int]] = set()

    async def setup_hook(self) -> None:
        await self.store.load()
        self._autosave_task = asyncio.create_task(self.store.autosave_loop(), name="msgpack-autosave")
        self._register_commands()

    async def close(self) -> None:
        if self._autosave_task is not None:
            self._autosave_task.cancel()
        await self.store.save()
        await super().close()

    def _register_commands(self) -> None:
        @self.command(name="health")
        async def health(ctx: commands.Context) -> None:
            uptime = datetime.now(tz=timezone.utc) - self.started_at
            payload = (
                f"Uptime: `{uptime}`\n"
                f"Guilds: `{len(self.guilds)}`\n"
                f"Forms: `{len(self.store.data['forms'])}`\n"
                f"Aliases: `{len(self.store.data['aliases'])}`\n"
                f"Proxied messages: `{len(self.store.data['proxied_messages'])}`\n"
                f"Alias cache entries: `{len(self.alias_cache)}`"
            )
            await ctx.send(payload)

        @self.group(name="form", invoke_without_command=True)
        async def form_group(ctx: commands.Context) -> None:
            forms = await self.identity.list_forms(ctx.author.id)
            if not forms:
                await ctx.send("You have no forms. Create one with `form add <name> [avatar_url]`.")
                return
            lines = ["Your forms:"]
            for form in forms:
                aliases = await self.alias_repo.get_by_form(form.id)
                triggers = ", ".join(f"`{alias.trigger_raw}`" for alias in aliases) or "(no aliases)"
                lines.append(f"- **{form.name}** `{form.id}` {triggers}")
            await ctx.send("\n".join(lines)[:1900])

        @form_group.command(name="add")
        async def form_add(ctx: commands.Context, name: str, avatar_url: str | None = None) -> None:
            form = await self.identity.create_form(ctx.author.id, name, avatar_url)
            await ctx.send(f"Form **{form.name}** created (`{form.id}`).")

        @form_group.command(name="edit")
        async def form_edit(ctx: commands.Context, form_ref: str, name: str, avatar_url: str | None = None) -> None:
            form = await self.identity.find_form(ctx.author.id, form_ref)
            updated = await self.identity.edit_form(form.id, ctx.author.id, name=name, avatar_url=avatar_url)
            await ctx.send(f"Form **{updated.name}** updated.")

        @form_group.command(name="delete")
        async def form_delete(ctx: commands.Context, *, form_ref: str) -> None:
            form = await self.identity.find_form(ctx.author.id, form_ref)
            removed = await self.identity.delete_form(form.id, ctx.author.id)
            await ctx.send(f"Form **{form.name}** deleted with `{removed}` alias(es).")

        @self.group(name="alias", invoke_without_command=True)
        async def alias_group(ctx: commands.Context, *, form_ref: str) -> None:
            form = await self.identity.find_form(ctx.author.id, form_ref)
            _, aliases = await self.identity.list_aliases(form.id, ctx.author.id)
            if not aliases:
                await ctx.send(f"**{form.name}** has no aliases.")
                return
            lines = [f"Aliases for **{form.name}**:"]
            lines.extend(f"- `{alias.trigger_raw}` ({alias.kind}) `{alias.id}`" for alias in aliases)
            await ctx.send("\n".join(lines)[:1900])

        @alias_group.command(name="add")
        async def alias_add(ctx: commands.Context, form_ref: str, *, trigger: str) -> None:
            form = await self.identity.find_form(ctx.author.id, form_ref)
            alias = await self.identity.add_alias(form.id, ctx.author.id, trigger)
            await ctx.send(f"Alias `{alias.trigger_raw}` added to **{form.name}**.")

        @alias_group.command(name="remove")
        async def alias_remove(ctx: commands.Context, alias_id: str) -> None:
            await self.identity.remove_alias(alias_id, ctx.author.id)
            await ctx.send("Alias removed.")

        @self.group(name="proxy", invoke_without_command=True)
        async def proxy_group(ctx: commands.Context) -> None:
            await ctx.send("Usage: `proxy send <form> <text>`, `proxy edit <message_id> <text>`, `proxy delete <message_id>` or `proxy who <message_id>`.")

        @proxy_group.command(name="delete")
        async def proxy_delete(ctx: commands.Context, message_id: int) -> None:
            if not isinstance(ctx.channel, discord.TextChannel) or not isinstance(ctx.author, discord.Member):
                await ctx.send("Run this in a server text channel.")
                return
            result = await self._delete_for_member(ctx.author, message_id, ctx.channel)
            await ctx.send("Deleted." if result.ok else f"Not deleted: {result.reason}.")

        @proxy_group.command(name="edit")
        async def proxy_edit(ctx: commands.Context, message_id: int, *, text: str) -> None:
            if not isinstance(ctx.channel, discord.TextChannel):
                await ctx.send("Run this in a server text channel.")
                return
            await self.coordinator.edit(ctx.author.id, message_id, text, self._port_for(ctx.channel))
            await ctx.send("Edited.")

        @proxy_group.command(name="send")
        async def proxy_send(ctx: commands.Context, form_ref: str, *, text: str) -> None:
            if not isinstance(ctx.channel, discord.TextChannel) or not isinstance(ctx.author, discord.Member):
                await ctx.send("Run this in a server text channel.")
                return
            sent = await self._send_as_form(ctx.author, ctx.channel, form_ref, text, original_message_id=ctx.message.id)
            if sent is None:
                await ctx.send("Insufficient permissions to send message.")
                return
            await self._delete_original(ctx.message)

        @proxy_group.command(name="who")
        async def proxy_who(ctx: commands.Context, message_id: int) -> None:
            if not isinstance(ctx.channel, discord.TextChannel) or not isinstance(ctx.author, discord.Member):
                await ctx.send("Run this in a server text channel.")
                return
            await ctx.send(await self._who_sent_text(ctx.author, ctx.channel, message_id))

    async def on_command_error(self, ctx: commands.Context, exception: Exception) -> None:
        if isinstance(exception, commands.CommandNotFound):
            return
        original = getattr(exception, "original", exception)
        if isinstance(original, (ValidationError, NotFoundError, AuthorizationError)):
            await ctx.send(str(original))
            return
        if isinstance(exception, commands.UserInputError):
            await ctx.send(f"Bad arguments: {exception}")
            return
        self.logger.log("command.error", error=str(original), command=ctx.command.name if ctx.command else "unknown")
        await ctx.send(f"Command error: {original}")

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.webhook_id is not None:
            return
        if message.guild is None or not isinstance(message.channel, discord.TextChannel):
            await self.process_commands(message)
            return
        if message.content.startswith(self.settings.command_prefix):
            await self.process_commands(message)
            return
        if message.content:
            try:
                await self._maybe_proxy(message)
            except FormProxyError as exc:
                self.logger.log(
                    "proxy.listener_error",
                    user_id=message.author.id,
                    guild_id=message.guild.id,
                    channel_id=message.channel.id,
                    error=str(exc)[:300],
                )

    async def _maybe_proxy(self, message: discord.Message) -> bool:
        match = await self.matcher.match(message.author.id, message.content)
        if match is None:
            return False
        channel = message.channel
        member = message.author if isinstance(message.author, discord.Member) else await get_member(message.guild, message.author.id)
        if member is None:
            return False
        attachments = [
            ProxyAttachment(name=item.filename, data=await item.read(), spoiler=item.is_spoiler())
            for item in message.attachments
        ]
        sanitized = evaluate(
            capabilities_for(member, channel),
            ChannelContext(guild_id=message.guild.id, channel_id=channel.id),
            OutboundContent(
                content=match.rendered_text,
                attachments=attachments,
                user_mentions=[user.id for user in message.mentions],
                role_mentions=[role.id for role in message.role_mentions],
            ),
        )
        if sanitized is None:
            self.logger.log("proxy.denied", user_id=member.id, channel_id=channel.id, guild_id=message.guild.id)
            return False
        if not sanitized.content and not sanitized.attachments:
            return False
        await self.coordinator.coordinate(
            member.id,
            match.alias.form_id,
            channel.id,
            message.guild.id,
            sanitized.content,
            self._port_for(channel),
            attachments=sanitized.attachments,
            reply_to=self._reply_target(message),
            original_message_id=message.id,
            allowed_mentions=sanitized.allowed_mentions,
            suppress_embeds=sanitized.suppress_embeds,
        )
        await self._delete_original(message)
        return True

    async def _send_as_form(
        self,
        member: discord.Member,
        channel: discord.TextChannel,
        form_ref: str,
        text: str,
        *,
        original_message_id: int | None = None,
    ) -> SendResult | None:
        form = await self.identity.find_form(member.id, form_ref)
        sanitized = evaluate(
            capabilities_for(member, channel),
            ChannelContext(guild_id=channel.guild.id, channel_id=channel.id),
            OutboundContent(content=text),
        )
        if sanitized is None:
            self.logger.log("proxy.denied", user_id=member.id, channel_id=channel.id, guild_id=channel.guild.id)
            return None
        return await self.coordinator.coordinate(
            member.id,
            form.id,
            channel.id,
            channel.guild.id,
            sanitized.content,
            self._port_for(channel),
            prefetched_form=form,
            original_message_id=original_message_id,
            allowed_mentions=sanitized.allowed_mentions,
            suppress_embeds=sanitized.suppress_embeds,
        )

    async def _who_sent_text(self, member: discord.Member, channel: discord.TextChannel, message_id: int) -> str:
        row = await self.deleter.who_sent(
            message_id,
            member.id,
            can_manage_messages=capabilities_for(member, channel).manage_messages,
        )
        if row is None:
            return "No proxy information found for this message."
        form = await self.form_repo.get_by_id(row.form_id)
        form_name = form.name if form is not None else "(deleted form)"
        return f"Sent by <@{row.user_id}> as **{form_name}** in <#{row.channel_id}> at `{row.created_at}`."

    async def _delete_for_member(
        self,
        member: discord.Member,
        message_id: int,
        fallback_channel: discord.TextChannel,
    ) -> DeleteResult:
        # Token-less deletes go through a channel, so it has to be the one the message lives in.
        row = await self.linkage_repo.find_by_message_id(message_id)
        channel = (self._text_channel(row.channel_id) if row is not None else None) or fallback_channel
        return await self.deleter.delete_proxied(
            self._port_for(channel),
            message_id,
            member.id,
            can_manage_messages=capabilities_for(member, channel).manage_messages,
        )

    async def _delete_original(self, message: discord.Message) -> None:
        if not self.settings.delete_original:
            return
        try:
            await message.delete()
        except discord.HTTPException as exc:
            self.logger.log("proxy.original_delete_failed", message_id=message.id, error=str(exc)[:300])

    def _port_for(self, channel: discord.TextChannel) -> ChannelProxyPort:
        return DiscordChannelProxy(self, channel)

    def _text_channel(self, channel_id: int) -> discord.TextChannel | None:
        channel = self.get_channel(int(channel_id))
        return channel if isinstance(channel, discord.TextChannel) else None

    def _reply_target(self, message: discord.Message) -> ReplyTarget | None:
        ref = message.reference
        if ref is None or ref.message_id is None:
            return None
        resolved = ref.resolved if isinstance(ref.resolved, discord.Message) else None
        return ReplyTarget(
            guild_id=message.guild.id if message.guild else 0,
            channel_id=ref.channel_id,
            message_id=ref.message_id,
            author_id=resolved.author.id if resolved else None,
            author_name=resolved.author.display_name if resolved else None,
            content=resolved.content if resolved else "",
            has_embeds=bool(resolved.embeds) if resolved else False,
            has_attachments=bool(resolved.attachments) if resolved else False,
            url=resolved.jump_url if resolved else None,
        )

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        if payload.guild_id is None or str(payload.emoji) != self.settings.delete_reaction:
            return
        if self.user is not None and payload.user_id == self.user.id:
            return
        key = (payload.message_id, payload.user_id)
        if key in self._pending_deletions:
            return
        self._pending_deletions.add(key)
        try:
            guild = self.get_guild(payload.guild_id)
            channel = self._text_channel(payload.channel_id)
            if guild is None or channel is None:
                return
            member = payload.member or await get_member(guild, payload.user_id)
            if member is None or member.bot:
                return
            result = await self._delete_for_member(member, payload.message_id, channel)
            if not result.ok and result.reason != REASON_NOT_FOUND:
                self.logger.log("delete.reaction_rejected", message_id=payload.message_id, user_id=member.id, reason=result.reason)
        finally:
            self._pending_deletions.discard(key)


def main() -> None:
    settings = Settings.load()
    bot = FormProxyBot(settings)
    bot.run(settings.discord_token)
