"""Data model shared by the classifier, router and service adapters."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .constants import ButtonType, ChatState


@dataclass(frozen=True)
class Sender:
    """The Telegram user an update came from."""

    chat_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sender":
        return cls(
            chat_id=int(data["id"]),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            username=data.get("username"),
        )


@dataclass(frozen=True)
class UserProfile:
    chat_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def from_sender(cls, sender: Sender) -> "UserProfile":
        return cls(
            chat_id=sender.chat_id,
            first_name=sender.first_name,
            last_name=sender.last_name,
            username=sender.username,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            chat_id=int(data["chat_id"]),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            username=data.get("username"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "username": self.username,
        }


@dataclass(frozen=True)
class ChatSession:
    chat_id: int
    state: ChatState = ChatState.ACTIVE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatSession":
        # NEW is never persisted; it and unknown values read back as ACTIVE.
        state = ChatState.from_string(data.get("chat_state"))
        if state is None or state is ChatState.NEW:
            state = ChatState.ACTIVE
        return cls(chat_id=int(data["chat_id"]), state=state)

    def to_dict(self) -> Dict[str, Any]:
        return {"chat_id": self.chat_id, "chat_state": self.state.value}


# ---------------------------------------------------------------------------
# Classified updates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandUpdate:
    sender: Sender
    token: str
    text: str


@dataclass(frozen=True)
class FreeTextUpdate:
    sender: Sender
    text: str


@dataclass(frozen=True)
class MediaUpdate:
    sender: Sender


@dataclass(frozen=True)
class CallbackUpdate:
    sender: Sender
    data: Optional[str]
    query_id: Optional[str] = None


@dataclass(frozen=True)
class MalformedUpdate:
    """An update that matched none of the known shapes."""

    update_id: Optional[int] = None
    reason: str = ""


ClassifiedUpdate = Union[
    CommandUpdate, FreeTextUpdate, MediaUpdate, CallbackUpdate, MalformedUpdate
]


# ---------------------------------------------------------------------------
# Completion API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    prompt: str

    def to_dict(self) -> Dict[str, Any]:
        return {"model": self.model, "prompt": self.prompt}


@dataclass(frozen=True)
class Choice:
    index: int
    content: Optional[str]


@dataclass(frozen=True)
class CompletionResponse:
    choices: List[Choice] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CompletionResponse":
        """Parse ``{"choices": [{"index": 0, "message": {"content": ...}}]}``.

        Missing or null ``choices`` give an empty response. A non-string
        ``content`` reads as None. Fields other than ``index`` and
        ``message.content`` are ignored.

        Raises:
            TypeError: ``choices`` is present but not a list.
        """
        if not data:
            return cls()
        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise TypeError(f"choices must be a list, got {type(raw_choices).__name__}")
        choices = []
        for position, raw in enumerate(raw_choices):
            if not isinstance(raw, dict):
                continue
            message = raw.get("message")
            if not isinstance(message, dict):
                message = {}
            content = message.get("content")
            choices.append(
                Choice(
                    index=raw.get("index", position),
                    content=content if isinstance(content, str) else None,
                )
            )
        return cls(choices=choices)

    @property
    def first(self) -> Optional[Choice]:
        return self.choices[0] if self.choices else None


# ---------------------------------------------------------------------------
# Outbound messaging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MenuButton:
    """An inline keyboard button carrying either a callback token or a URL."""

    label: str
    kind: ButtonType
    callback_data: Optional[str] = None
    url: Optional[str] = None

    def __post_init__(self):
        if self.kind is ButtonType.CALLBACK:
            if not self.callback_data or self.url is not None:
                raise ValueError(
                    f"Callback button '{self.label}' needs callback_data and no url"
                )
        elif self.kind is ButtonType.URL:
            if not self.url or self.callback_data is not None:
                raise ValueError(
                    f"Link button '{self.label}' needs url and no callback_data"
                )


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    error_code: Optional[int] = None
    description: Optional[str] = None
