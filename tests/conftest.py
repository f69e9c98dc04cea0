"""Shared fixtures: in-memory store, recording messenger, scripted completion client."""
import os

# app.main validates the environment at import time.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SESSION_BACKEND", "memory")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "")

import pytest

from app.router import ChatRouter
from app.services.completion_client import CompletionError
from app.services.memory_session_service import InMemorySessionService
from chat_agent.models import Choice, CompletionResponse, DeliveryResult


class RecordingMessenger:
    """Messenger double that records every send and returns a fixed result."""

    def __init__(self, result=None):
        self.result = result if result is not None else DeliveryResult(ok=True)
        self.sent = []  # (chat_id, text)
        self.menus = []  # (chat_id, header, buttons)
        self.answered = []

    async def send_text(self, chat_id, text):
        self.sent.append((chat_id, text))
        return self.result

    async def send_menu(self, chat_id, header, buttons):
        self.menus.append((chat_id, header, list(buttons)))
        return self.result

    async def answer_callback(self, query_id):
        self.answered.append(query_id)
        return DeliveryResult(ok=True)

    def texts(self, chat_id=None):
        return [text for cid, text in self.sent if chat_id is None or cid == chat_id]


class ScriptedCompletionClient:
    """Completion double returning a canned response or raising an error."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def complete(self, model, prompt):
        self.calls.append((model, prompt))
        if self.error is not None:
            raise self.error
        return self.response

    async def aclose(self):
        return None


def reply(*contents):
    """CompletionResponse with one choice per content string."""
    return CompletionResponse(
        choices=[Choice(index=i, content=c) for i, c in enumerate(contents)]
    )


def text_update(chat_id, text, update_id=1, **sender):
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": chat_id, "is_bot": False, **sender},
            "text": text,
        },
    }


def photo_update(chat_id, update_id=1):
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": chat_id, "is_bot": False, "first_name": "Ann"},
            "photo": [{"file_id": "abc", "file_unique_id": "u", "width": 90, "height": 90}],
        },
    }


def callback_update(chat_id, data, update_id=1, **sender):
    return {
        "update_id": update_id,
        "callback_query": {
            "id": f"cb-{update_id}",
            "from": {"id": chat_id, "is_bot": False, **sender},
            "chat_instance": "ci",
            "data": data,
        },
    }


@pytest.fixture
def store():
    return InMemorySessionService()


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def completion():
    return ScriptedCompletionClient(response=reply("hello"))


@pytest.fixture
def router(store, messenger, completion):
    return ChatRouter(
        session_service=store,
        messenger=messenger,
        completion_client=completion,
        model="test-model",
    )


@pytest.fixture
def remote_failure():
    return CompletionError("503 Service Unavailable", status_code=503)
