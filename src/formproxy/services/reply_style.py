from __future__ import annotations

import re

from formproxy.models import ReplyTarget

MESSAGE_LIMIT = 2000
SNIPPET_LIMIT = 120

_MARKDOWN_PATTERNS = (
    re.compile(r"```[\s\S]*?```"),
    re.compile(r"\*\*(.*?)\*\*"),
    re.compile(r"\*(.*?)\*"),
    re.compile(r"__(.*?)__"),
    re.compile(r"_(.*?)_"),
    re.compile(r"~~(.*?)~~"),
    re.compile(r"`(.*?)`"),
)


def create_snippet(content: str, *, has_embeds: bool = False, has_attachments: bool = False) -> str:
    text = str(content or "")
    if not text:
        placeholders = []
        if has_embeds:
            placeholders.append("[embed]")
        if has_attachments:
            placeholders.append("[image]")
        text = " ".join(placeholders)
    text = _MARKDOWN_PATTERNS[0].sub("", text)
    for pattern in _MARKDOWN_PATTERNS[1:]:
        text = pattern.sub(r"\1", text)
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > SNIPPET_LIMIT:
        text = text[: SNIPPET_LIMIT - 3] + "..."
    return text


def build_message_url(guild_id: int, channel_id: int, message_id: int) -> str:
    return f"https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"


def build_reply_style(
    display_name: str | None,
    message_url: str | None,
    content: str,
    *,
    has_embeds: bool = False,
    has_attachments: bool = False,
) -> str:
    """Small `-#` header line pointing at the replied-to message."""
    snippet = create_snippet(content, has_embeds=has_embeds, has_attachments=has_attachments)
    prefix = f"-# **↩︎ Replying to @{display_name}** " if display_name else "-# **↩︎ Replying** "
    room = MESSAGE_LIMIT - len(prefix) - (4 if message_url else 0)
    if len(snippet) > room:
        snippet = snippet[: room - 3] + "..."
    if message_url:
        return f"{prefix}[{snippet}]({message_url})"
    return f"{prefix}{snippet}"


def reply_header_for(target: ReplyTarget) -> str:
    url = target.url or build_message_url(target.guild_id, target.channel_id, target.message_id)
    return build_reply_style(
        target.author_name,
        url,
        target.content,
        has_embeds=target.has_embeds,
        has_attachments=target.has_attachments,
    )


def assemble_content(content: str, header_line: str | None, limit: int = MESSAGE_LIMIT) -> str:
    if not header_line:
        return content[:limit]
    return f"{header_line}\n{content}"[:limit]
