from __future__ import annotations

import re

from formproxy.errors import ValidationError
from formproxy.models import AliasKind

PLACEHOLDER = "text"

EMPTY_TRIGGER_MESSAGE = "Alias trigger must be a non-empty string"
MISSING_PLACEHOLDER_MESSAGE = 'Alias trigger must contain the literal word "text"'

# `name:text`, optional spaces between the colon and the placeholder, placeholder ends the trigger.
_PREFIX_RE = re.compile(r"^[^{}]*?\S[^{}]*?:[ \t]*text$")
_PATTERN_RE = re.compile(r"^\{[^{}]*\btext\b[^{}]*\}$")
_WHITESPACE_RUN = re.compile(r"\s+")


def classify(trigger_norm: str) -> AliasKind:
    if trigger_norm.startswith("{") and trigger_norm.endswith("}"):
        return "pattern"
    return "prefix"


def normalize(raw: str) -> str:
    """
    Canonical form of a trigger, used both for storage and for matching.

    Prefix triggers (`Neoli:text`) are trimmed and lowercased with internal
    spacing kept as typed. Pattern triggers (`{ TEXT }`) are trimmed, lowercased
    and have whitespace runs collapsed to a single space.
    """

    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError(EMPTY_TRIGGER_MESSAGE)
    candidate = raw.strip().lower()
    if candidate.startswith("{") or candidate.endswith("}"):
        collapsed = _WHITESPACE_RUN.sub(" ", candidate)
        if not _PATTERN_RE.match(collapsed):
            raise ValidationError(MISSING_PLACEHOLDER_MESSAGE)
        return collapsed
    if not _PREFIX_RE.match(candidate):
        raise ValidationError(MISSING_PLACEHOLDER_MESSAGE)
    return candidate


def split_pattern(trigger_norm: str) -> tuple[str, str]:
    """Fixed text before and after the placeholder of a pattern trigger."""
    index = _placeholder_index(trigger_norm)
    return trigger_norm[:index], trigger_norm[index + len(PLACEHOLDER):]


def _placeholder_index(trigger_norm: str) -> int:
    match = re.search(r"\btext\b", trigger_norm)
    if match is None:
        raise ValidationError(MISSING_PLACEHOLDER_MESSAGE)
    return match.start()
