"""Per-chat state machine and update dispatch.

Every inbound update goes through ChatRouter.handle_update():

  raw update dict
        │
        ▼
  classify_update()  ──► MalformedUpdate: logged and dropped
        │
        ▼
  _resolve_state()   ──► unknown chat: create user + chat config, state NEW
        │
        ├── NEW      ──► welcome message, nothing else
        ├── ACTIVE   ──► _dispatch() by update kind / command / callback token
        └── DORMANT  ──► no-op

handle_update() is the per-update error boundary: nothing raised while
handling one update escapes it, so one bad update never blocks the rest of
a batch.
"""
import asyncio
import logging
import time
import traceback
import weakref
from typing import Any, Dict, Iterable, List, Optional

from chat_agent.classifier import classify_update
from chat_agent.constants import MAX_MESSAGE_LENGTH, ChatState, Command, Messages
from chat_agent.menu import MAIN_MENU, Button
from chat_agent.models import (
    CallbackUpdate,
    ChatSession,
    ClassifiedUpdate,
    CommandUpdate,
    DeliveryResult,
    FreeTextUpdate,
    MalformedUpdate,
    MediaUpdate,
    Sender,
    UserProfile,
)

from app.metrics import (
    COMMAND_TOTAL,
    COMPLETION_ERRORS,
    COMPLETION_LATENCY,
    DELIVERY_FAILURES,
    NEW_CHATS_TOTAL,
    UPDATE_TOTAL,
)
from app.services.completion_client import CompletionError

logger = logging.getLogger(__name__)

_UPDATE_KIND_LABELS = {
    CommandUpdate: "command",
    FreeTextUpdate: "text",
    MediaUpdate: "media",
    CallbackUpdate: "callback",
    MalformedUpdate: "malformed",
}


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Split text into chunks Telegram accepts (max 4096 chars each)."""
    if len(text) <= limit:
        return [text]
    return [text[i:i + limit] for i in range(0, len(text), limit)]


class ChatRouter:
    """Routes classified updates to handlers based on the chat's stored state."""

    def __init__(self, session_service, messenger, completion_client, model: str):
        """
        Args:
            session_service: Store with find_user/find_session/create_* methods.
            messenger: Outbound sender (TelegramMessenger or a test double).
            completion_client: CompletionClient used for free-text messages.
            model: Model identifier sent with every completion request.
        """
        self.session_service = session_service
        self.messenger = messenger
        self.completion_client = completion_client
        self.model = model
        # One lock per chat keeps a chat's updates in receipt order when
        # webhooks arrive concurrently. Entries vanish once no task holds them.
        self._chat_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process(self, updates: Iterable[Dict[str, Any]]) -> int:
        """Process a batch of raw updates in order.

        Returns:
            Number of updates confirmed (every update, handled or dropped).
        """
        count = 0
        for update in updates:
            await self.handle_update(update)
            count += 1
        return count

    async def handle_update(self, update: Dict[str, Any]) -> None:
        """Classify and handle a single raw update. Never raises."""
        try:
            classified = classify_update(update)
            UPDATE_TOTAL.labels(kind=_UPDATE_KIND_LABELS[type(classified)]).inc()

            if isinstance(classified, MalformedUpdate):
                logger.warning(
                    f"Dropping malformed update {classified.update_id}: {classified.reason}"
                )
                return

            chat_id = classified.sender.chat_id
            async with self._lock_for(chat_id):
                await self._handle_classified(classified)
        except Exception as e:
            logger.error(f"Error processing update: {e}")
            logger.error(traceback.format_exc())

    def _lock_for(self, chat_id: int) -> asyncio.Lock:
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._chat_locks[chat_id] = lock
        return lock

    async def _handle_classified(self, update: ClassifiedUpdate) -> None:
        sender = update.sender
        chat_id = sender.chat_id

        if isinstance(update, CallbackUpdate):
            ack = await self.messenger.answer_callback(update.query_id)
            if not ack.ok:
                logger.warning(
                    f"Callback query for chat {chat_id} not answered: {ack.description}"
                )

        state = await self._resolve_state(sender)

        if state is ChatState.NEW:
            await self._send_text(chat_id, Messages.WELCOME)
        elif state is ChatState.ACTIVE:
            await self._dispatch(update)
        elif state is ChatState.DORMANT:
            # Nothing transitions chats here yet; dormant chats get no reply.
            logger.info(f"Chat {chat_id} is dormant, ignoring update")

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def _resolve_state(self, sender: Sender) -> ChatState:
        """Load the chat's state, creating the chat on first contact.

        Returns NEW only for the update that actually created the chat; the
        stored state is already ACTIVE by then.
        """
        chat_id = sender.chat_id
        user = await self.session_service.find_user(chat_id)
        session = await self.session_service.find_session(chat_id)

        if user is None and session is None:
            profile = UserProfile.from_sender(sender)
            session = ChatSession(chat_id=chat_id, state=ChatState.ACTIVE)
            created = await self.session_service.create_chat(profile, session)
            if created:
                NEW_CHATS_TOTAL.inc()
                logger.info(f"New chat {chat_id} (@{sender.username or '-'})")
                return ChatState.NEW
            # Another worker created the chat between our read and write.
            stored = await self.session_service.find_session(chat_id)
            return stored.state if stored else ChatState.ACTIVE

        # Partial records (one of the two documents missing): repair and carry on.
        if session is None:
            logger.warning(f"Chat {chat_id} has a user but no chat config, recreating it")
            session = ChatSession(chat_id=chat_id, state=ChatState.ACTIVE)
            await self.session_service.create_session(session)
        if user is None:
            logger.warning(f"Chat {chat_id} has a chat config but no user, recreating it")
            await self.session_service.create_user(UserProfile.from_sender(sender))

        return session.state

    # ------------------------------------------------------------------
    # Dispatch for ACTIVE chats
    # ------------------------------------------------------------------

    async def _dispatch(self, update: ClassifiedUpdate) -> None:
        chat_id = update.sender.chat_id

        if isinstance(update, FreeTextUpdate):
            await self._handle_free_text(chat_id, update.text)
        elif isinstance(update, CommandUpdate):
            await self._handle_command(chat_id, update)
        elif isinstance(update, CallbackUpdate):
            await self._handle_callback(chat_id, update)
        elif isinstance(update, MediaUpdate):
            await self._send_text(chat_id, Messages.CANNOT_PROCESS_MEDIA)
            await self._send_text(chat_id, Messages.HELP)

    async def _handle_command(self, chat_id: int, update: CommandUpdate) -> None:
        command = Command.from_token(update.token)
        COMMAND_TOTAL.labels(command=command.value if command else "unknown").inc()

        if command is Command.START:
            await self._send_text(chat_id, Messages.STARTING_OVER)
            await self._send_text(chat_id, Messages.WELCOME)
        elif command is Command.HELP:
            await self._send_text(chat_id, Messages.HELP)
        elif command is Command.MENU:
            await self._send_menu(chat_id, Messages.MENU_HEADER, MAIN_MENU)
        elif command is Command.SAFETY:
            await self._send_text(chat_id, Messages.SAFETY)
        elif command is Command.SUPPORT:
            await self._send_text(chat_id, Messages.SUPPORT)
        else:
            logger.info(f"Unknown command from chat {chat_id}: {update.text[:50]}")
            await self._send_text(chat_id, Messages.UNKNOWN_COMMAND)
            await self._send_text(chat_id, Messages.HELP)

    async def _handle_callback(self, chat_id: int, update: CallbackUpdate) -> None:
        button = Button.from_callback(update.data)

        if button is Button.HELP:
            await self._send_text(chat_id, Messages.HELP)
        elif button is Button.SAFETY:
            await self._send_text(chat_id, Messages.SAFETY)
        elif button is Button.SUPPORT:
            await self._send_text(chat_id, Messages.SUPPORT)
        else:
            logger.warning(f"Unknown callback data from chat {chat_id}: {update.data!r}")

    async def _handle_free_text(self, chat_id: int, text: str) -> None:
        """Forward free text to the completion API and relay the first choice."""
        logger.info(f"Processing message from {chat_id}: {text[:50]}")
        start_time = time.monotonic()
        try:
            response = await self.completion_client.complete(self.model, text)
        except CompletionError as e:
            COMPLETION_ERRORS.labels(type="remote").inc()
            logger.error(f"Completion request failed for chat {chat_id}: {e}")
            logger.error(traceback.format_exc())
            await self._send_text(
                chat_id,
                Messages.OH_SOMETHING_WENT_WRONG + str(e) + Messages.YOU_NEED_TO_CALL_SUPPORT,
            )
            return
        finally:
            COMPLETION_LATENCY.observe(time.monotonic() - start_time)

        first = response.first
        if first is None or not first.content:
            COMPLETION_ERRORS.labels(type="empty").inc()
            logger.warning(f"Completion API returned no choices for chat {chat_id}")
            await self._send_text(chat_id, Messages.NO_RESPONSE)
            return

        for chunk in split_message(first.content):
            await self._send_text(chat_id, chunk)

    # ------------------------------------------------------------------
    # Outbound helpers
    # ------------------------------------------------------------------

    async def _send_text(self, chat_id: int, text: str) -> DeliveryResult:
        result = await self.messenger.send_text(chat_id, text)
        self._check_delivery(chat_id, result, "sendMessage")
        return result

    async def _send_menu(
        self, chat_id: int, header: str, buttons: Iterable[Button]
    ) -> DeliveryResult:
        result = await self.messenger.send_menu(chat_id, header, [b.value for b in buttons])
        self._check_delivery(chat_id, result, "sendMenu")
        return result

    @staticmethod
    def _check_delivery(chat_id: int, result: Optional[DeliveryResult], method: str) -> None:
        if result is None:
            DELIVERY_FAILURES.labels(method=method).inc()
            logger.error(f"Message was not sent to chat {chat_id}. Response is null")
        elif not result.ok:
            DELIVERY_FAILURES.labels(method=method).inc()
            logger.error(
                f"Message was not sent to chat {chat_id}. "
                f"Error code: {result.error_code}, {result.description}"
            )
