from __future__ import annotations

from formproxy.models import Alias, MatchResult
from formproxy.ports import AliasStore
from formproxy.services.alias_cache import AliasCache
from formproxy.services.alias_normalizer import split_pattern
from formproxy.services.logger_service import LoggerService


class AliasMatcher:
    def __init__(self, aliases: AliasStore, cache: AliasCache, logger: LoggerService) -> None:
        self.aliases = aliases
        self.cache = cache
        self.logger = logger

    async def match(self, user_id: int, text: str) -> MatchResult | None:
        """
        Pick the alias a message was typed with.

        Prefix aliases are tried first: the longest trigger that prefixes the text
        (case-insensitively) wins; equal triggers break on alias id so the result
        never depends on store order.
        Pattern aliases are only considered when no prefix alias matches.
        Store failures propagate to the caller.
        """

        grouped = await self._grouped(user_id)
        if not grouped:
            return None
        prefix_aliases: list[Alias] = []
        pattern_aliases: list[Alias] = []
        for form_aliases in grouped.values():
            for alias in form_aliases:
                if alias.kind == "pattern":
                    pattern_aliases.append(alias)
                else:
                    prefix_aliases.append(alias)

        result = self._match_prefix(prefix_aliases, text)
        if result is None:
            result = self._match_pattern(pattern_aliases, text)
        if result is None:
            return None
        self.logger.log(
            "alias.match",
            user_id=user_id,
            alias_id=result.alias.id,
            form_id=result.alias.form_id,
            trigger=result.alias.trigger_raw,
            kind=result.alias.kind,
        )
        return result

    def invalidate(self, user_id: int) -> None:
        self.cache.invalidate(user_id)

    async def _grouped(self, user_id: int) -> dict[str, list[Alias]]:
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached
        grouped = await self.aliases.get_grouped_by_form(user_id)
        self.cache.set(user_id, grouped)
        return grouped

    def _match_prefix(self, aliases: list[Alias], text: str) -> MatchResult | None:
        hits: list[tuple[int, str, str, Alias, int]] = []
        for alias in aliases:
            if not alias.trigger_norm:
                continue
            consumed = _lowered_prefix_len(text, alias.trigger_norm)
            if consumed is not None:
                hits.append((-len(alias.trigger_norm), alias.trigger_norm, alias.id, alias, consumed))
        if not hits:
            return None
        _, _, _, best, consumed = min(hits, key=lambda hit: hit[:3])
        return MatchResult(alias=best, rendered_text=text[consumed:].strip())

    def _match_pattern(self, aliases: list[Alias], text: str) -> MatchResult | None:
        hits: list[tuple[int, str, str, Alias, int, int]] = []
        for alias in aliases:
            head, tail = split_pattern(alias.trigger_norm)
            head_len = _lowered_prefix_len(text, head)
            tail_len = _lowered_suffix_len(text, tail)
            if head_len is None or tail_len is None or head_len + tail_len > len(text):
                continue
            hits.append((-(len(head) + len(tail)), alias.trigger_norm, alias.id, alias, head_len, tail_len))
        if not hits:
            return None
        _, _, _, best, head_len, tail_len = min(hits, key=lambda hit: hit[:3])
        inner = text[head_len : len(text) - tail_len]
        return MatchResult(alias=best, rendered_text=inner.strip())


# Lowercasing can change length ("İ" becomes two code points), so offsets into
# the typed text are counted on the typed text itself.
def _lowered_prefix_len(text: str, lowered: str) -> int | None:
    if not lowered:
        return 0
    for size in range(1, min(len(text), len(lowered)) + 1):
        if text[:size].lower() == lowered:
            return size
    return None


def _lowered_suffix_len(text: str, lowered: str) -> int | None:
    if not lowered:
        return 0
    for size in range(1, min(len(text), len(lowered)) + 1):
        if text[len(text) - size :].lower() == lowered:
            return size
    return None
