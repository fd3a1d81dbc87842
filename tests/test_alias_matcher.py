from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from formproxy.errors import TransportError
from formproxy.models import Alias
from formproxy.repositories import AliasRepo
from formproxy.services.alias_cache import AliasCache
from formproxy.services.alias_matcher import AliasMatcher
from formproxy.services.alias_normalizer import classify, normalize
from formproxy.services.logger_service import LoggerService
from formproxy.storage import MessagePackStore

USER_ID = 1001


class StubAliasStore:
    def __init__(self, aliases: list[Alias] | None = None) -> None:
        self.aliases = list(aliases or [])
        self.calls = 0
        self.fail = False

    async def get_grouped_by_form(self, user_id: int) -> dict[str, list[Alias]]:
        self.calls += 1
        if self.fail:
            raise TransportError("store offline")
        grouped: dict[str, list[Alias]] = {}
        for alias in self.aliases:
            if alias.user_id == user_id:
                grouped.setdefault(alias.form_id, []).append(alias)
        return grouped


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _alias(alias_id: str, trigger: str, form_id: str = "form-1", user_id: int = USER_ID) -> Alias:
    norm = normalize(trigger)
    return Alias(id=alias_id, user_id=user_id, form_id=form_id, trigger_raw=trigger, trigger_norm=norm, kind=classify(norm))


def _make_logger(tmp_path: Path) -> LoggerService:
    store = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(store.load())
    return LoggerService(store, echo=False)


def _make_matcher(tmp_path: Path, aliases: list[Alias], clock: FakeClock | None = None) -> tuple[AliasMatcher, StubAliasStore]:
    stub = StubAliasStore(aliases)
    cache = AliasCache(ttl_sec=300, clock=clock or FakeClock())
    return AliasMatcher(stub, cache, _make_logger(tmp_path)), stub


def test_longest_prefix_wins(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("a1", "n:text"), _alias("a2", "neoli:text", form_id="form-2")])

    result = asyncio.run(matcher.match(USER_ID, "neoli:text hello world"))

    assert result is not None
    assert result.alias.trigger_norm == "neoli:text"
    assert result.alias.form_id == "form-2"
    assert result.rendered_text == "hello world"


def test_prefix_match_is_case_insensitive_and_keeps_content_case(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("a1", "n:text")])

    result = asyncio.run(matcher.match(USER_ID, "N:TEXT  Hello   There  "))

    assert result is not None
    assert result.rendered_text == "Hello   There"


def test_exact_trigger_renders_empty_text(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("a1", "n:text")])

    result = asyncio.run(matcher.match(USER_ID, "n:text"))

    assert result is not None
    assert result.rendered_text == ""


def test_no_aliases_returns_none(tmp_path: Path) -> None:
    matcher, stub = _make_matcher(tmp_path, [])

    assert asyncio.run(matcher.match(USER_ID, "n:text hi")) is None
    assert stub.calls == 1


def test_no_matching_alias_returns_none(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("a1", "n:text")])

    assert asyncio.run(matcher.match(USER_ID, "hello n:text")) is None


def test_other_users_aliases_are_ignored(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("a1", "n:text", user_id=2002)])

    assert asyncio.run(matcher.match(USER_ID, "n:text hi")) is None


def test_pattern_alias_extracts_interior(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("p1", "{text}")])

    result = asyncio.run(matcher.match(USER_ID, "{ hello world }"))

    assert result is not None
    assert result.alias.kind == "pattern"
    assert result.rendered_text == "hello world"


def test_pattern_requires_matching_brackets(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("p1", "{text}")])

    assert asyncio.run(matcher.match(USER_ID, "[hello]")) is None
    assert asyncio.run(matcher.match(USER_ID, "{hello")) is None
    assert asyncio.run(matcher.match(USER_ID, "hello}")) is None


def test_prefix_takes_precedence_over_pattern(tmp_path: Path) -> None:
    legacy = Alias(id="a1", user_id=USER_ID, form_id="form-n", trigger_raw="{n:text", trigger_norm="{n:text", kind="prefix")
    matcher, _ = _make_matcher(tmp_path, [_alias("p1", "{text}", form_id="form-p"), legacy])

    result = asyncio.run(matcher.match(USER_ID, "{n:text hi}"))

    assert result is not None
    assert result.alias.form_id == "form-n"
    assert result.rendered_text == "hi}"


def test_duplicate_triggers_resolve_independent_of_store_order(tmp_path: Path) -> None:
    first = Alias(id="z", user_id=USER_ID, form_id="form-z", trigger_raw="b:text", trigger_norm="ab:text", kind="prefix")
    second = Alias(id="a", user_id=USER_ID, form_id="form-a", trigger_raw="a:text", trigger_norm="ab:text", kind="prefix")
    forward, _ = _make_matcher(tmp_path, [first, second])
    backward, _ = _make_matcher(tmp_path, [second, first])

    one = asyncio.run(forward.match(USER_ID, "ab:text hi"))
    two = asyncio.run(backward.match(USER_ID, "ab:text hi"))

    assert one is not None and two is not None
    assert one.alias.id == two.alias.id == "a"


def test_trigger_plus_rendered_text_round_trips(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("a1", "n:text"), _alias("a2", "neoli:text")])
    original = "neoli:text some message"

    result = asyncio.run(matcher.match(USER_ID, original))

    assert result is not None
    assert f"{result.alias.trigger_norm} {result.rendered_text}" == original


def test_cache_skips_store_within_ttl_and_refetches_after(tmp_path: Path) -> None:
    clock = FakeClock()
    matcher, stub = _make_matcher(tmp_path, [_alias("a1", "n:text")], clock=clock)

    asyncio.run(matcher.match(USER_ID, "n:text one"))
    asyncio.run(matcher.match(USER_ID, "n:text two"))
    assert stub.calls == 1

    clock.now += 301
    asyncio.run(matcher.match(USER_ID, "n:text three"))
    assert stub.calls == 2


def test_invalidate_forces_refetch(tmp_path: Path) -> None:
    matcher, stub = _make_matcher(tmp_path, [_alias("a1", "n:text")])

    asyncio.run(matcher.match(USER_ID, "x:text hi"))
    stub.aliases.append(_alias("a2", "x:text"))
    assert asyncio.run(matcher.match(USER_ID, "x:text hi")) is None

    matcher.invalidate(USER_ID)
    result = asyncio.run(matcher.match(USER_ID, "x:text hi"))
    assert result is not None
    assert result.alias.id == "a2"
    assert stub.calls == 2


def test_store_failure_propagates(tmp_path: Path) -> None:
    matcher, stub = _make_matcher(tmp_path, [_alias("a1", "n:text")])
    stub.fail = True

    with pytest.raises(TransportError):
        asyncio.run(matcher.match(USER_ID, "n:text hi"))


def test_match_against_msgpack_repo(tmp_path: Path) -> None:
    store = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(store.load())
    repo = AliasRepo(store)
    asyncio.run(repo.create(USER_ID, "form-1", "N:text", "n:text", "prefix"))
    asyncio.run(repo.create(USER_ID, "form-2", "{text}", "{text}", "pattern"))
    matcher = AliasMatcher(repo, AliasCache(), LoggerService(store, echo=False))

    prefix = asyncio.run(matcher.match(USER_ID, "n:text hey"))
    pattern = asyncio.run(matcher.match(USER_ID, "{hey}"))

    assert prefix is not None and prefix.alias.form_id == "form-1"
    assert pattern is not None and pattern.alias.form_id == "form-2"
    assert store.data["logs"][-1]["event"] == "alias.match"


def test_case_folding_that_grows_text_keeps_user_content(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("a1", "İİ:text"), _alias("p1", "{İİ text}", form_id="form-p")])

    prefix = asyncio.run(matcher.match(USER_ID, "İİ:text hello world"))
    pattern = asyncio.run(matcher.match(USER_ID, "{İİ hello}"))

    assert prefix is not None and prefix.rendered_text == "hello world"
    assert pattern is not None and pattern.alias.id == "p1"
    assert pattern.rendered_text == "hello"


def test_pattern_head_and_tail_cannot_overlap(tmp_path: Path) -> None:
    matcher, _ = _make_matcher(tmp_path, [_alias("p1", "{a text a}")])

    assert asyncio.run(matcher.match(USER_ID, "{a a}")) is None
    result = asyncio.run(matcher.match(USER_ID, "{A hi A}"))
    assert result is not None and result.rendered_text == "hi"
