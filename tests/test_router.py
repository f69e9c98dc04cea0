"""Tests for the chat state machine and dispatch table."""
import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from app.router import ChatRouter, split_message
from app.services.completion_client import CompletionClient, CompletionError
from chat_agent.constants import ChatState, Messages
from chat_agent.menu import Button
from chat_agent.models import ChatSession, CompletionResponse, DeliveryResult, UserProfile
from conftest import (
    RecordingMessenger,
    ScriptedCompletionClient,
    callback_update,
    photo_update,
    reply,
    text_update,
)

CHAT = 1001


async def _make_existing(store, chat_id=CHAT, state=ChatState.ACTIVE):
    await store.create_chat(UserProfile(chat_id=chat_id), ChatSession(chat_id=chat_id, state=state))


# ---------------------------------------------------------------------------
# First contact
# ---------------------------------------------------------------------------


class TestBootstrap:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "update",
        [
            text_update(CHAT, "hello", first_name="Ann", last_name="Lee", username="ann"),
            text_update(CHAT, "/help", first_name="Ann", last_name="Lee", username="ann"),
            photo_update(CHAT),
            callback_update(CHAT, "safety", first_name="Ann", last_name="Lee", username="ann"),
        ],
    )
    async def test_first_contact_creates_chat_and_welcomes_once(
        self, router, store, messenger, completion, update
    ):
        await router.handle_update(update)

        assert messenger.texts() == [Messages.WELCOME]
        assert messenger.menus == []
        assert completion.calls == []
        assert await store.find_user(CHAT) is not None
        session = await store.find_session(CHAT)
        assert session.state is ChatState.ACTIVE

    @pytest.mark.asyncio
    async def test_profile_populated_from_sender(self, router, store):
        await router.handle_update(
            text_update(CHAT, "hi", first_name="Ann", last_name="Lee", username="ann")
        )
        assert await store.find_user(CHAT) == UserProfile(
            chat_id=CHAT, first_name="Ann", last_name="Lee", username="ann"
        )

    @pytest.mark.asyncio
    async def test_profile_from_callback_sender(self, router, store):
        await router.handle_update(callback_update(CHAT, "help", first_name="Bo"))
        assert (await store.find_user(CHAT)).first_name == "Bo"

    @pytest.mark.asyncio
    async def test_second_update_is_dispatched(self, router, messenger, completion):
        await router.handle_update(text_update(CHAT, "hi", update_id=1))
        await router.handle_update(text_update(CHAT, "hi again", update_id=2))

        assert messenger.texts() == [Messages.WELCOME, "hello"]
        assert completion.calls == [("test-model", "hi again")]

    @pytest.mark.asyncio
    async def test_create_chat_called_with_matching_ids(self, messenger, completion):
        store = AsyncMock()
        store.find_user.return_value = None
        store.find_session.return_value = None
        store.create_chat.return_value = True
        router = ChatRouter(store, messenger, completion, "m")

        await router.handle_update(text_update(CHAT, "hi"))

        store.create_chat.assert_awaited_once()
        profile, session = store.create_chat.await_args.args
        assert profile.chat_id == session.chat_id == CHAT
        assert session.state is ChatState.ACTIVE
        store.create_user.assert_not_awaited()
        store.create_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_creation_race_dispatches_normally(self, messenger, completion):
        store = AsyncMock()
        store.find_user.return_value = None
        store.find_session.side_effect = [None, ChatSession(chat_id=CHAT)]
        store.create_chat.return_value = False
        router = ChatRouter(store, messenger, completion, "m")

        await router.handle_update(text_update(CHAT, "hi"))

        assert messenger.texts() == ["hello"]

    @pytest.mark.asyncio
    async def test_concurrent_first_updates_welcome_once(self, router, store, messenger):
        await asyncio.gather(
            router.handle_update(text_update(CHAT, "one", update_id=1)),
            router.handle_update(text_update(CHAT, "two", update_id=2)),
        )
        assert messenger.texts().count(Messages.WELCOME) == 1
        assert messenger.texts() == [Messages.WELCOME, "hello"]

    @pytest.mark.asyncio
    async def test_missing_session_is_recreated(self, router, store, messenger):
        await store.create_user(UserProfile(chat_id=CHAT))

        await router.handle_update(text_update(CHAT, "/help"))

        assert (await store.find_session(CHAT)).state is ChatState.ACTIVE
        assert messenger.texts() == [Messages.HELP]

    @pytest.mark.asyncio
    async def test_missing_user_is_recreated(self, router, store, messenger):
        await store.create_session(ChatSession(chat_id=CHAT))

        await router.handle_update(text_update(CHAT, "/help", first_name="Ann"))

        assert (await store.find_user(CHAT)).first_name == "Ann"
        assert messenger.texts() == [Messages.HELP]


# ---------------------------------------------------------------------------
# Commands and callbacks for existing chats
# ---------------------------------------------------------------------------


class TestCommands:
    @pytest.mark.asyncio
    async def test_start_resends_welcome(self, router, store, messenger):
        await _make_existing(store)
        await router.handle_update(text_update(CHAT, "/start"))
        assert messenger.texts() == [Messages.STARTING_OVER, Messages.WELCOME]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("/help", Messages.HELP),
            ("/HELP", Messages.HELP),
            ("/safety", Messages.SAFETY),
            ("/Safety", Messages.SAFETY),
            ("/support", Messages.SUPPORT),
            ("/help@chat_ai_bot", Messages.HELP),
        ],
    )
    async def test_text_commands(self, router, store, messenger, text, expected):
        await _make_existing(store)
        await router.handle_update(text_update(CHAT, text))
        assert messenger.texts() == [expected]

    @pytest.mark.asyncio
    async def test_menu_sends_three_buttons_in_order(self, router, store, messenger):
        await _make_existing(store)
        await router.handle_update(text_update(CHAT, "/menu"))

        assert messenger.sent == []
        assert len(messenger.menus) == 1
        chat_id, header, buttons = messenger.menus[0]
        assert chat_id == CHAT
        assert header == Messages.MENU_HEADER
        assert buttons == [Button.SUPPORT.value, Button.SAFETY.value, Button.HELP.value]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["/unknown", "/help me", "/"])
    async def test_unknown_command(self, router, store, messenger, completion, text):
        await _make_existing(store)
        await router.handle_update(text_update(CHAT, text))
        assert messenger.texts() == [Messages.UNKNOWN_COMMAND, Messages.HELP]
        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_media_is_rejected_with_help(self, router, store, messenger):
        await _make_existing(store)
        await router.handle_update(photo_update(CHAT))
        assert messenger.texts() == [Messages.CANNOT_PROCESS_MEDIA, Messages.HELP]


class TestCallbacks:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["help", "safety", "support"])
    async def test_callback_matches_command_output(self, store, token):
        await _make_existing(store)
        by_command = RecordingMessenger()
        by_callback = RecordingMessenger()
        completion = ScriptedCompletionClient(response=reply("x"))

        await ChatRouter(store, by_command, completion, "m").handle_update(
            text_update(CHAT, f"/{token}")
        )
        await ChatRouter(store, by_callback, completion, "m").handle_update(
            callback_update(CHAT, token)
        )

        assert by_callback.texts() == by_command.texts()
        assert len(by_callback.texts()) == 1

    @pytest.mark.asyncio
    async def test_callback_is_answered(self, router, store, messenger):
        await _make_existing(store)
        await router.handle_update(callback_update(CHAT, "help", update_id=7))
        assert messenger.answered == ["cb-7"]

    @pytest.mark.asyncio
    async def test_unknown_callback_is_dropped(self, router, store, messenger):
        await _make_existing(store)
        await router.handle_update(callback_update(CHAT, "menu"))
        assert messenger.sent == []
        assert messenger.answered == ["cb-1"]


# ---------------------------------------------------------------------------
# Free text and the completion API
# ---------------------------------------------------------------------------


class TestFreeText:
    @pytest.mark.asyncio
    async def test_first_choice_relayed_verbatim(self, router, store, messenger, completion):
        await _make_existing(store)
        await router.handle_update(text_update(CHAT, "Say hello"))

        assert completion.calls == [("test-model", "Say hello")]
        assert messenger.texts() == ["hello"]

    @pytest.mark.asyncio
    async def test_only_first_of_several_choices(self, store, messenger):
        await _make_existing(store)
        completion = ScriptedCompletionClient(response=reply("first", "second"))
        await ChatRouter(store, messenger, completion, "m").handle_update(
            text_update(CHAT, "hi")
        )
        assert messenger.texts() == ["first"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [CompletionResponse(), reply(""), reply(None)])
    async def test_empty_completion_sends_no_response(self, store, messenger, response):
        await _make_existing(store)
        completion = ScriptedCompletionClient(response=response)
        await ChatRouter(store, messenger, completion, "m").handle_update(
            text_update(CHAT, "hi")
        )
        assert messenger.texts() == [Messages.NO_RESPONSE]

    @pytest.mark.asyncio
    async def test_remote_failure_message_order(self, store, messenger, remote_failure):
        await _make_existing(store)
        completion = ScriptedCompletionClient(error=remote_failure)
        await ChatRouter(store, messenger, completion, "m").handle_update(
            text_update(CHAT, "hi")
        )

        [text] = messenger.texts()
        assert text.startswith(Messages.OH_SOMETHING_WENT_WRONG)
        assert text.endswith(Messages.YOU_NEED_TO_CALL_SUPPORT)
        assert text == (
            Messages.OH_SOMETHING_WENT_WRONG
            + "503 Service Unavailable"
            + Messages.YOU_NEED_TO_CALL_SUPPORT
        )

    @pytest.mark.asyncio
    async def test_remote_failure_does_not_stop_batch(self, store, messenger):
        await _make_existing(store)
        completion = ScriptedCompletionClient(error=CompletionError("boom"))
        router = ChatRouter(store, messenger, completion, "m")

        confirmed = await router.process(
            [text_update(CHAT, "hi", update_id=1), text_update(CHAT, "/help", update_id=2)]
        )

        assert confirmed == 2
        assert messenger.texts()[-1] == Messages.HELP

    @pytest.mark.asyncio
    async def test_long_reply_is_split(self, store, messenger):
        await _make_existing(store)
        long_text = "a" * 5000
        completion = ScriptedCompletionClient(response=reply(long_text))
        await ChatRouter(store, messenger, completion, "m").handle_update(
            text_update(CHAT, "hi")
        )
        assert messenger.texts() == ["a" * 4096, "a" * 904]


class TestMalformedCompletionBodies:
    """A real CompletionClient over httpx.MockTransport, so body parsing is covered."""

    @staticmethod
    def _router(store, messenger, body):
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body))
        )
        completion = CompletionClient("https://completion.test/v1", http_client=http_client)
        return ChatRouter(store, messenger, completion, "m")

    @pytest.mark.asyncio
    async def test_non_list_choices_sends_apology(self, store, messenger):
        await _make_existing(store)
        router = self._router(store, messenger, {"choices": 5})

        await router.handle_update(text_update(CHAT, "hi"))

        [text] = messenger.texts()
        assert text == (
            Messages.OH_SOMETHING_WENT_WRONG
            + "unexpected completion response shape"
            + Messages.YOU_NEED_TO_CALL_SUPPORT
        )

    @pytest.mark.asyncio
    async def test_non_string_content_sends_no_response(self, store, messenger):
        await _make_existing(store)
        router = self._router(
            store, messenger, {"choices": [{"index": 0, "message": {"content": 123}}]}
        )

        await router.handle_update(text_update(CHAT, "hi"))

        assert messenger.texts() == [Messages.NO_RESPONSE]


def test_split_message_short_text_untouched():
    assert split_message("hello") == ["hello"]


# ---------------------------------------------------------------------------
# States, malformed updates and failure containment
# ---------------------------------------------------------------------------


class TestContainment:
    @pytest.mark.asyncio
    async def test_dormant_chat_gets_no_reply(self, router, store, messenger, completion):
        await _make_existing(store, state=ChatState.DORMANT)
        await router.handle_update(text_update(CHAT, "hi"))
        assert messenger.sent == []
        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_malformed_update_is_dropped(self, router, store, messenger):
        await router.handle_update({"update_id": 1})
        assert messenger.sent == []
        assert await store.find_user(0) is None

    @pytest.mark.asyncio
    async def test_delivery_failure_is_logged_not_raised(self, store, completion, caplog):
        await _make_existing(store)
        messenger = RecordingMessenger(
            result=DeliveryResult(ok=False, error_code=403, description="Forbidden: bot was blocked")
        )
        router = ChatRouter(store, messenger, completion, "m")

        await router.handle_update(text_update(CHAT, "/start"))

        assert len(messenger.sent) == 2
        assert "bot was blocked" in caplog.text
        assert str(CHAT) in caplog.text

    @pytest.mark.asyncio
    async def test_null_delivery_result_is_logged(self, store, completion, caplog):
        await _make_existing(store)
        messenger = RecordingMessenger()
        messenger.send_text = AsyncMock(return_value=None)
        router = ChatRouter(store, messenger, completion, "m")

        await router.handle_update(text_update(CHAT, "/help"))

        assert "Response is null" in caplog.text

    @pytest.mark.asyncio
    async def test_store_failure_is_contained(self, messenger, completion):
        store = AsyncMock()
        store.find_user.side_effect = RuntimeError("firestore down")
        router = ChatRouter(store, messenger, completion, "m")

        confirmed = await router.process([text_update(CHAT, "hi"), {"update_id": 2}])

        assert confirmed == 2
        assert messenger.sent == []

    @pytest.mark.asyncio
    async def test_updates_for_one_chat_keep_order(self, store):
        await _make_existing(store)
        order = []

        class SlowFirstCompletion:
            async def complete(self, model, prompt):
                if prompt == "first":
                    await asyncio.sleep(0.05)
                order.append(prompt)
                return reply(prompt)

        messenger = RecordingMessenger()
        router = ChatRouter(store, messenger, SlowFirstCompletion(), "m")
        await asyncio.gather(
            router.handle_update(text_update(CHAT, "first", update_id=1)),
            router.handle_update(text_update(CHAT, "second", update_id=2)),
        )

        assert order == ["first", "second"]
        assert messenger.texts() == ["first", "second"]
