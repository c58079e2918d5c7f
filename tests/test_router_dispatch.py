from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import aira_bot.core.mixins.stream_mixin as stream_mod  # noqa: E402
import aira_bot.core.router as router_mod  # noqa: E402
from aira_bot.config import Settings  # noqa: E402
from aira_bot.core.message import Message  # noqa: E402
from aira_bot.core.module import HandlerResult  # noqa: E402
from aira_bot.core.router import AiraRouter, StartupError  # noqa: E402
from aira_bot.memory.store import MemoryStore  # noqa: E402

_ABSENT = object()


def _settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = dict(
        misskey_host="https://misskey.example",
        misskey_token="token",
        misskey_timeout_seconds=30,
        environment="test",
        sqlite_path=tmp_path / "memory.db",
        modules=(),
        default_reaction="love",
        renote_reaction="love",
        reply_delay_seconds=0.0,
        reaction_affinity_increment=0.1,
        timer_sweep_seconds=3600.0,
        heartbeat_seconds=3600.0,
        account_fetch_attempts=3,
        stream_reconnect_max_seconds=60.0,
    )
    values.update(overrides)
    return Settings(**values)


class _FakeClient:
    def __init__(self, *, notes: dict[str, dict[str, Any]] | None = None, failures: int = 0) -> None:
        self.notes = notes or {}
        self.failures = failures
        self.fetch_calls = 0
        self.shown: list[str] = []
        self.reactions: list[tuple[str, str]] = []
        self.reads: list[str] = []
        self.closed = False

    async def fetch_account(self) -> dict[str, Any]:
        self.fetch_calls += 1
        if self.fetch_calls <= self.failures:
            raise RuntimeError("instance is down")
        return {"id": "aira", "username": "aira"}

    async def show_note(self, note_id: str) -> dict[str, Any]:
        self.shown.append(note_id)
        return dict(self.notes[note_id])

    async def create_reaction(self, note_id: str, reaction: str) -> None:
        self.reactions.append((note_id, reaction))

    async def read_message(self, message_id: str) -> None:
        self.reads.append(message_id)

    async def close(self) -> None:
        self.closed = True


class _Module:
    def __init__(
        self,
        name: str,
        log: list[tuple[Any, ...]],
        *,
        mention: Any = _ABSENT,
        context: Any = _ABSENT,
    ) -> None:
        self.name = name
        self.log = log
        self.mention_result = mention
        self.context_result = context
        self.router: AiraRouter | None = None

    def init(self, router: AiraRouter) -> None:
        self.router = router

    def install(self) -> dict[str, Any]:
        hooks: dict[str, Any] = {}
        if self.mention_result is not _ABSENT:
            hooks["mention_hook"] = self.mention_hook
        if self.context_result is not _ABSENT:
            hooks["context_hook"] = self.context_hook
        return hooks

    async def mention_hook(self, msg: Message) -> Any:
        self.log.append((self.name, "mention", msg.id, msg.text))
        if isinstance(self.mention_result, Exception):
            raise self.mention_result
        return self.mention_result

    async def context_hook(self, key: str | None, msg: Message, data: Any) -> Any:
        self.log.append((self.name, "context", key, data))
        return self.context_result


def _note(note_id: str, text: str | None, *, user_id: str = "alice", reply_id: str | None = None, is_bot: bool = False) -> dict[str, Any]:
    return {
        "id": note_id,
        "userId": user_id,
        "user": {"id": user_id, "username": user_id, "isBot": is_bot},
        "text": text,
        "replyId": reply_id,
    }


async def _start(
    tmp_path: Path,
    modules: list[Any],
    client: _FakeClient | None = None,
    stream: Any = None,
    **overrides: Any,
) -> tuple[AiraRouter, _FakeClient]:
    client = client or _FakeClient()
    settings = _settings(tmp_path, **overrides)
    router = AiraRouter(settings, MemoryStore(settings.sqlite_path), client, modules, stream=stream)
    await router.start()
    return router, client


def test_context_hook_runs_before_any_mention_hook(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    quiz = _Module("quiz", log, context=None)
    greeter = _Module("greeter", log, mention=True)

    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, [greeter, quiz])
        await router.subscribe_reply(quiz, "question-1", False, "note-1", {"answer": 42})
        await router.handle_incoming(Message.from_note(_note("reply-1", "42!", reply_id="note-1")))
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert log == [("quiz", "context", "question-1", {"answer": 42})]
    assert client.reactions == [("reply-1", "love")]


def test_context_fallthrough_walks_mention_hooks_in_priority_order(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    modules = [
        _Module("quiz", log, context=False),
        _Module("first", log, mention=False),
        _Module("second", log, mention=True),
        _Module("third", log, mention=True),
    ]

    async def scenario() -> None:
        router, _ = await _start(tmp_path, modules)
        await router.subscribe_reply("quiz", None, False, "note-1")
        await router.handle_incoming(Message.from_note(_note("reply-1", "hm", reply_id="note-1")))
        await router.close()

    asyncio.run(scenario())

    assert [entry[:2] for entry in log] == [
        ("quiz", "context"),
        ("first", "mention"),
        ("second", "mention"),
    ]


def test_mention_chain_stops_at_first_result_object_and_adopts_overrides(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    modules = [
        _Module("silent", log, mention=None),
        _Module("liker", log, mention=HandlerResult(reaction="like", immediate=True)),
        _Module("never", log, mention=True),
    ]
    paced: list[bool] = []

    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, modules)

        async def _record_pace() -> None:
            paced.append(True)

        router._pace = _record_pace  # type: ignore[method-assign]
        await router.handle_incoming(Message.from_note(_note("n1", "@aira hi")))
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert [entry[0] for entry in log] == ["silent", "liker"]
    assert client.reactions == [("n1", "like")]
    assert paced == []


def test_exhausted_chain_uses_default_reaction_and_pacing(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    modules = [_Module("a", log, mention=False), _Module("b", log, mention=None)]
    paced: list[bool] = []

    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, modules)

        async def _record_pace() -> None:
            paced.append(True)

        router._pace = _record_pace  # type: ignore[method-assign]
        await router.handle_incoming(Message.from_note(_note("n1", "@aira hello")))
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert len(log) == 2
    assert client.reactions == [("n1", "love")]
    assert paced == [True]


def test_truthy_non_result_values_do_not_stop_the_chain(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    modules = [
        _Module("stringy", log, mention="ok"),
        _Module("numeric", log, mention=1),
        _Module("handler", log, mention={"reaction": "star"}),
        _Module("never", log, mention=True),
    ]

    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, modules)
        await router.handle_incoming(Message.from_note(_note("n1", "@aira hi")))
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert [entry[0] for entry in log] == ["stringy", "numeric", "handler"]
    assert client.reactions == [("n1", "star")]


def test_empty_reaction_override_suppresses_reaction(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    modules = [_Module("quiet", log, mention={"reaction": "", "immediate": True})]

    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, modules)
        await router.handle_incoming(Message.from_note(_note("n1", "@aira psst")))
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert client.reactions == []


def test_direct_message_context_is_keyed_by_peer_and_marked_read(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    chat = _Module("chat", log, context=HandlerResult(reaction="ignored"))

    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, [chat])
        await router.subscribe_reply(chat, "dm-thread", True, "bob")
        message = Message.from_messaging({"id": "m1", "userId": "bob", "user": {"id": "bob"}, "text": "yo"})
        await router.handle_incoming(message)
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert log == [("chat", "context", "dm-thread", None)]
    assert client.reads == ["m1"]
    assert client.reactions == []


def test_own_and_bot_messages_are_dropped(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    modules = [_Module("any", log, mention=True)]

    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, modules)
        await router.handle_incoming(Message.from_note(_note("n1", "@aira me", user_id="aira")))
        await router.handle_incoming(Message.from_note(_note("n2", "@aira beep", user_id="robo", is_bot=True)))
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert log == []
    assert client.reactions == []


def test_failing_hook_sends_no_ack_and_next_event_still_routes(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    broken = _Module("broken", log, mention=RuntimeError("boom"))

    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, [broken])
        await router.handle_incoming(Message.from_note(_note("n1", "@aira one")))
        broken.mention_result = True
        await router.handle_incoming(Message.from_note(_note("n2", "@aira two")))
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert [entry[2] for entry in log] == ["n1", "n2"]
    assert client.reactions == [("n2", "love")]


def test_duplicate_contexts_resolve_to_the_oldest_subscription(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    older = _Module("older", log, context=True)
    newer = _Module("newer", log, context=True)

    async def scenario() -> None:
        router, _ = await _start(tmp_path, [newer, older])
        await router.subscribe_reply(older, "k1", False, "note-1")
        await router.subscribe_reply(newer, "k2", False, "note-1")
        await router.handle_incoming(Message.from_note(_note("reply-1", "hi", reply_id="note-1")))
        await router.close()

    asyncio.run(scenario())

    assert log == [("older", "context", "k1", None)]


def test_context_of_unregistered_module_falls_back_to_mention_hooks(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    fallback = _Module("fallback", log, mention=True)

    async def scenario() -> None:
        router, _ = await _start(tmp_path, [fallback])
        await router.subscribe_reply("removed-module", "k", False, "note-1")
        await router.handle_incoming(Message.from_note(_note("reply-1", "hi", reply_id="note-1")))
        await router.close()

    asyncio.run(scenario())

    assert [entry[:2] for entry in log] == [("fallback", "mention")]


def test_unsubscribe_reply_clears_every_conversation_under_the_key(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    game = _Module("game", log, context=True)
    other = _Module("other", log, context=True, mention=True)

    async def scenario() -> tuple[int, list[Any]]:
        router, _ = await _start(tmp_path, [game, other])
        await router.subscribe_reply(game, "round-1", False, "note-1")
        await router.subscribe_reply(game, "round-1", True, "bob")
        await router.subscribe_reply(other, "round-1", False, "note-2")
        removed = await router.unsubscribe_reply(game, "round-1")
        await router.handle_incoming(Message.from_note(_note("reply-1", "hi", reply_id="note-1")))
        remaining = await router.memory.list_contexts()
        await router.close()
        return removed, remaining

    removed, remaining = asyncio.run(scenario())

    assert removed == 2
    assert [(ctx.module, ctx.target_id) for ctx in remaining] == [("other", "note-2")]
    assert [entry[:2] for entry in log] == [("other", "mention")]


def test_reply_without_text_is_refetched_before_dispatch(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    echo = _Module("echo", log, mention=True)
    full = _note("reply-1", "what a nice note", reply_id="aira-note-1")
    client = _FakeClient(notes={"reply-1": full})

    async def scenario() -> None:
        router, _ = await _start(tmp_path, [echo], client=client)
        await router.on_reply(_note("reply-1", None, reply_id="aira-note-1"))
        await router.close()

    asyncio.run(scenario())

    assert client.shown == ["reply-1"]
    assert log == [("echo", "mention", "reply-1", "what a nice note")]


def test_reply_starting_with_own_mention_is_left_to_the_mention_event(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    echo = _Module("echo", log, mention=True)

    async def scenario() -> None:
        router, _ = await _start(tmp_path, [echo])
        await router.on_reply(_note("reply-1", "@aira hey", reply_id="x"))
        await router.on_mention(_note("reply-1", "@aira hey", reply_id="x"))
        await router.on_mention(_note("n2", "hello @aira"))
        await router.close()

    asyncio.run(scenario())

    assert log == [("echo", "mention", "reply-1", "@aira hey")]


def test_reaction_notification_raises_affinity_without_replying(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []
    echo = _Module("echo", log, mention=True)

    async def scenario() -> tuple[Any, _FakeClient]:
        router, client = await _start(tmp_path, [echo])
        await router.on_notification({"type": "reaction", "user": {"id": "U", "username": "ulla"}})
        await router.on_notification({"type": "follow", "user": {"id": "U"}})
        friend = await router.lookup_friend("U")
        await router.close()
        return friend, client

    friend, client = asyncio.run(scenario())

    assert friend is not None
    assert friend.love == pytest.approx(0.1)
    assert friend.name == "ulla"
    assert log == []
    assert client.reactions == []
    assert client.reads == []


def test_renote_is_liked_unless_it_is_empty(tmp_path: Path) -> None:
    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, [])
        await router.on_renote(_note("rn1", "quote text"))
        await router.on_renote({**_note("rn2", None), "files": []})
        await router.on_renote(_note("rn3", "mine", user_id="aira"))
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert client.reactions == [("rn1", "love")]


def test_startup_aborts_after_three_failed_account_fetches(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(router_mod, "_retry_delay", lambda attempt: 0.0)
    client = _FakeClient(failures=10)

    with pytest.raises(StartupError, match="Failed to fetch the account"):
        asyncio.run(_start(tmp_path, [], client=client))

    assert client.fetch_calls == 3


def test_startup_recovers_when_account_fetch_succeeds_on_retry(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(router_mod, "_retry_delay", lambda attempt: 0.0)
    client = _FakeClient(failures=2)

    async def scenario() -> str:
        router, _ = await _start(tmp_path, [], client=client)
        account_id = router.account_id
        await router.close()
        return account_id

    assert asyncio.run(scenario()) == "aira"
    assert client.fetch_calls == 3
    assert client.closed


def test_previous_heartbeat_is_exposed_as_last_sleeped_at(tmp_path: Path) -> None:
    async def scenario() -> int | None:
        memory = MemoryStore(tmp_path / "memory.db")
        await memory.init()
        await memory.set_meta(last_waking_at=1_700_000_000_000)
        router, _ = await _start(tmp_path, [])
        value = router.last_sleeped_at
        await router.log_waking()
        meta = await router.get_meta()
        await router.close()
        assert meta.last_waking_at > 1_700_000_000_000
        return value

    assert asyncio.run(scenario()) == 1_700_000_000_000


def test_duplicate_module_names_are_rejected(tmp_path: Path) -> None:
    log: list[tuple[Any, ...]] = []

    with pytest.raises(ValueError, match="installed twice"):
        asyncio.run(_start(tmp_path, [_Module("same", log), _Module("same", log)]))


class _FlakyStream:
    """Yields one mention, then fails; later connections idle until closed."""

    def __init__(self, note: dict[str, Any]) -> None:
        self.note = note
        self.calls = 0
        self.closed = asyncio.Event()

    async def events(self):
        self.calls += 1
        if self.calls == 1:
            yield "mention", self.note
            raise ValueError("unexpected frame")
        await self.closed.wait()

    async def close(self) -> None:
        self.closed.set()


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def test_stream_reader_failure_is_logged_and_restarted(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    monkeypatch.setattr(stream_mod, "_reader_backoff", lambda attempt, cap: 0.0)
    log: list[tuple[Any, ...]] = []
    echo = _Module("echo", log, mention=True)

    async def scenario() -> tuple[_FlakyStream, _FakeClient]:
        stream = _FlakyStream(_note("n1", "@aira hi"))
        router, client = await _start(tmp_path, [echo], stream=stream)
        await _wait_for(lambda: stream.calls >= 2 and client.reactions)
        await router.close()
        return stream, client

    stream, client = asyncio.run(scenario())

    assert client.reactions == [("n1", "love")]
    assert stream.calls == 2
    assert client.closed
    assert "Stream reader failed" in caplog.text


def test_close_survives_a_background_task_that_already_failed(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    async def scenario() -> _FakeClient:
        router, client = await _start(tmp_path, [])

        async def crash() -> None:
            raise ValueError("unexpected frame")

        task = asyncio.create_task(crash(), name="crashed")
        await asyncio.sleep(0)
        router._tasks.append(task)
        await router.close()
        return client

    client = asyncio.run(scenario())

    assert client.closed
    assert "Task crashed ended with an error" in caplog.text
