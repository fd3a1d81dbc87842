from __future__ import annotations

from dataclasses import dataclass, field

from formproxy.ports import AllowedMentions, ProxyAttachment

MENTION_PARSE_ALL = ("users", "roles", "everyone")


@dataclass(frozen=True)
class Capabilities:
    view_channel: bool = True
    send_messages: bool = True
    embed_links: bool = False
    attach_files: bool = False
    mention_everyone: bool = False
    manage_messages: bool = False


@dataclass(frozen=True)
class ChannelContext:
    guild_id: int
    channel_id: int


@dataclass
class OutboundContent:
    content: str
    attachments: list[ProxyAttachment] | None = None
    user_mentions: list[int] = field(default_factory=list)
    role_mentions: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class SanitizedPayload:
    content: str
    allowed_mentions: AllowedMentions
    attachments: list[ProxyAttachment] | None = None
    suppress_embeds: bool = False


def evaluate(capabilities: Capabilities, channel: ChannelContext, content: OutboundContent) -> SanitizedPayload | None:
    """
    Reduce outbound content to what the actor may post in the channel.

    Returns None when the actor cannot send there at all. Capabilities must be
    resolved by the caller; nothing here touches the network.
    """

    if not (capabilities.view_channel and capabilities.send_messages):
        return None
    attachments = content.attachments if capabilities.attach_files and content.attachments else None
    return SanitizedPayload(
        content=content.content,
        allowed_mentions=build_allowed_mentions(
            capabilities.mention_everyone,
            users=content.user_mentions,
            roles=content.role_mentions,
        ),
        attachments=list(attachments) if attachments else None,
        suppress_embeds=not capabilities.embed_links,
    )


def build_allowed_mentions(mention_everyone: bool, *, users: list[int] | None = None, roles: list[int] | None = None) -> AllowedMentions:
    if mention_everyone:
        return AllowedMentions(parse=MENTION_PARSE_ALL)
    return AllowedMentions(
        users=tuple(dict.fromkeys(int(uid) for uid in users or [])),
        roles=tuple(dict.fromkeys(int(rid) for rid in roles or [])),
    )
