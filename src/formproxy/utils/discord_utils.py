from __future__ import annotations

import discord

from formproxy.services.permission_guard import Capabilities


async def get_member(guild: discord.Guild, user_id: int) -> discord.Member | None:
    """
    Resolve a Member for a guild.

    The member cache can be cold depending on intents; this helper tries cache
    and then falls back to an API fetch.
    """

    cached = guild.get_member(int(user_id))
    if cached is not None:
        return cached
    try:
        return await guild.fetch_member(int(user_id))
    except (discord.Forbidden, discord.HTTPException):
        return None


def capabilities_from_permissions(perms: discord.Permissions) -> Capabilities:
    return Capabilities(
        view_channel=bool(perms.view_channel),
        send_messages=bool(perms.send_messages),
        embed_links=bool(perms.embed_links),
        attach_files=bool(perms.attach_files),
        mention_everyone=bool(perms.mention_everyone),
        manage_messages=bool(perms.manage_messages),
    )


def capabilities_for(member: discord.Member, channel: discord.abc.GuildChannel) -> Capabilities:
    return capabilities_from_permissions(channel.permissions_for(member))
