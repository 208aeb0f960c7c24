import asyncio

import pytest

from chat.auth import AuthError
from chat.controller import ChatController
from chat.state import DEFAULT_TITLE, ModelChoice, Streaming
from fakes import FakeRelay


def _run(coro):
    return asyncio.run(coro)


async def _signed_up(store, relay=None, login="alice", password="secret1") -> ChatController:
    controller = ChatController(store, relay or FakeRelay())
    await controller.sign_up(login, password)
    return controller


def test_sign_up_starts_with_no_sessions(store):
    controller = _run(_signed_up(store))

    assert controller.state.user_email == "alice@example.com"
    assert controller.state.sessions == []
    assert controller.state.selected_session_id is None
    assert controller.state.messages == []


def test_create_session_prepends_and_selects(store):
    async def scenario():
        controller = await _signed_up(store)
        first = await controller.create_session("  ")
        second = await controller.create_session("旅行の計画")
        return controller, first, second

    controller, first, second = _run(scenario())

    assert first.display_title == DEFAULT_TITLE
    assert [s.id for s in controller.state.sessions] == [second.id, first.id]
    assert controller.state.selected_session_id == second.id


def test_sign_in_loads_sessions_and_selects_newest(store):
    async def scenario():
        controller = await _signed_up(store, FakeRelay(["reply"]))
        await controller.create_session("old")
        newest = await controller.create_session("new")
        await controller.send("hello")
        await controller.reconciler.flush_writes()
        await controller.sign_out()

        again = ChatController(store, FakeRelay())
        await again.sign_in("alice", "secret1")
        return again, newest

    controller, newest = _run(scenario())

    assert [s.title for s in controller.state.sessions] == ["new", "old"]
    assert controller.state.selected_session_id == newest.id
    assert [(m.role, m.content) for m in controller.state.messages] == [("user", "hello"), ("assistant", "reply")]


def test_wrong_password_is_rejected(store):
    async def scenario():
        await _signed_up(store)
        await ChatController(store, FakeRelay()).sign_in("alice", "wrong-password")

    with pytest.raises(AuthError):
        _run(scenario())


def test_sign_out_tears_state_down(store):
    async def scenario():
        controller = await _signed_up(store)
        await controller.create_session("x")
        await controller.sign_out()
        return controller

    controller = _run(scenario())

    assert controller.state.user_id is None
    assert controller.state.sessions == []
    assert controller.state.selected_session_id is None


def test_deleting_selected_session_clears_selection_and_messages(store):
    async def scenario():
        controller = await _signed_up(store, FakeRelay(["hi there"]))
        keep = await controller.create_session("keep")
        doomed = await controller.create_session("doomed")
        await controller.send("hello")
        assert controller.state.messages
        deleted = await controller.delete_session(doomed.id)
        return controller, keep, doomed, deleted

    controller, keep, doomed, deleted = _run(scenario())

    assert deleted
    assert [s.id for s in controller.state.sessions] == [keep.id]
    assert controller.state.selected_session_id is None
    assert controller.state.messages == []
    assert [s.id for s in store.list_sessions(controller.state.user_id)] == [keep.id]


def test_deleting_another_session_keeps_selection(store):
    async def scenario():
        controller = await _signed_up(store)
        other = await controller.create_session("other")
        current = await controller.create_session("current")
        await controller.delete_session(other.id)
        return controller, current

    controller, current = _run(scenario())

    assert controller.state.selected_session_id == current.id
    assert [s.id for s in controller.state.sessions] == [current.id]


def test_rename_session(store):
    async def scenario():
        controller = await _signed_up(store)
        session = await controller.create_session("before")
        renamed = await controller.rename_session(session.id, "  after  ")
        blank = await controller.rename_session(session.id, "   ")
        return controller, session, renamed, blank

    controller, session, renamed, blank = _run(scenario())

    assert renamed and not blank
    assert controller.state.sessions[0].title == "after"
    assert store.list_sessions(controller.state.user_id)[0].title == "after"


def test_sessions_of_other_users_cannot_be_touched(store):
    async def scenario():
        alice = await _signed_up(store)
        session = await alice.create_session("private")
        bob = await _signed_up(store, login="bob")
        renamed = await bob.rename_session(session.id, "mine now")
        deleted = await bob.delete_session(session.id)
        return alice, session, renamed, deleted

    alice, session, renamed, deleted = _run(scenario())

    assert not renamed and not deleted
    assert [(s.id, s.title) for s in store.list_sessions(alice.state.user_id)] == [(session.id, "private")]


def test_switching_sessions_mid_stream_leaves_new_selection_alone(store):
    gate = asyncio.Event()
    relay = FakeRelay(["a", "b"], gate=gate)

    async def scenario():
        controller = await _signed_up(store, relay)
        streaming_session = await controller.create_session("A")
        other = await controller.create_session("B")
        store.add_message(controller.state.user_id, other.id, "user", "earlier")
        await controller.select_session(streaming_session.id)

        task = asyncio.create_task(controller.send("question"))
        while not isinstance(controller.state.send_state(streaming_session.id), Streaming):
            await asyncio.sleep(0)

        await controller.select_session(other.id)
        before = list(controller.state.messages)
        gate.set()
        await task
        await controller.reconciler.flush_writes()
        return controller, streaming_session, other, before

    controller, streaming_session, other, before = _run(scenario())

    assert controller.state.selected_session_id == other.id
    assert controller.state.messages == before
    assert [m.content for m in before] == ["earlier"]
    assert [m.content for m in controller.state.transcripts[streaming_session.id]] == ["question", "ab"]
    user_id = controller.state.user_id
    assert [m.content for m in store.list_messages(user_id, other.id)] == ["earlier"]
    assert [m.content for m in store.list_messages(user_id, streaming_session.id)] == ["question", "ab"]


def test_selecting_a_streaming_session_keeps_live_transcript(store):
    gate = asyncio.Event()

    async def scenario():
        controller = await _signed_up(store, FakeRelay(["x"], gate=gate))
        session = await controller.create_session("live")
        task = asyncio.create_task(controller.send("q"))
        while not isinstance(controller.state.send_state(session.id), Streaming):
            await asyncio.sleep(0)
        await controller.select_session(session.id)
        live = [m.pending for m in controller.state.messages]
        gate.set()
        await task
        return live

    assert _run(scenario()) == [False, True]


def test_model_choice_is_sent_to_relay(store):
    relay = FakeRelay(["ok"])

    async def scenario():
        controller = await _signed_up(store, relay)
        await controller.create_session("m")
        controller.set_model("flash")
        await controller.send("hi")
        return controller

    controller = _run(scenario())

    assert controller.state.model is ModelChoice.FLASH
    assert relay.calls[0]["model"] == "gemini-1.5-flash"


def test_model_choices_map_to_ids_and_labels():
    assert [(c.value, c.model_id, c.label) for c in ModelChoice] == [
        ("pro", "gemini-1.5-pro", "SHIMA 1.5 Pro"),
        ("flash", "gemini-1.5-flash", "SHIMA 1.5 Flash"),
    ]
    assert ModelChoice("flash") is ModelChoice.FLASH
