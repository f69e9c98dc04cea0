"""Classify raw Telegram update dicts into the update kinds the router handles.

Rules, first match wins:
  1. message text starting with "/"  -> CommandUpdate
  2. message text                    -> FreeTextUpdate
  3. message with a media payload    -> MediaUpdate
  4. callback_query                  -> CallbackUpdate
  5. anything else                   -> MalformedUpdate
"""
from typing import Any, Dict, Optional

from .constants import COMMAND_PREFIX, MEDIA_KEYS
from .models import (
    CallbackUpdate,
    ClassifiedUpdate,
    CommandUpdate,
    FreeTextUpdate,
    MalformedUpdate,
    MediaUpdate,
    Sender,
)


def _extract_sender(payload: Dict[str, Any]) -> Optional[Sender]:
    sender = payload.get("from")
    if not isinstance(sender, dict) or sender.get("id") is None:
        return None
    try:
        return Sender.from_dict(sender)
    except (TypeError, ValueError):
        return None


def classify_update(update: Dict[str, Any]) -> ClassifiedUpdate:
    """Return exactly one update kind for a raw Telegram update."""
    update_id = update.get("update_id") if isinstance(update, dict) else None
    if not isinstance(update, dict):
        return MalformedUpdate(reason="update is not an object")

    message = update.get("message") or update.get("edited_message")
    if isinstance(message, dict):
        sender = _extract_sender(message)
        if sender is None:
            return MalformedUpdate(update_id=update_id, reason="message without sender")

        text = message.get("text")
        if isinstance(text, str):
            if text.startswith(COMMAND_PREFIX):
                return CommandUpdate(
                    sender=sender, token=text[len(COMMAND_PREFIX):], text=text
                )
            return FreeTextUpdate(sender=sender, text=text)

        if any(message.get(key) for key in MEDIA_KEYS):
            return MediaUpdate(sender=sender)

        return MalformedUpdate(update_id=update_id, reason="message without text or media")

    callback = update.get("callback_query")
    if isinstance(callback, dict):
        sender = _extract_sender(callback)
        if sender is None:
            return MalformedUpdate(update_id=update_id, reason="callback without sender")
        return CallbackUpdate(
            sender=sender,
            data=callback.get("data"),
            query_id=callback.get("id"),
        )

    return MalformedUpdate(update_id=update_id, reason="no message or callback")

