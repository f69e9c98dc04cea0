"""Telegram bot webhook handler for the completion API bridge.

This module wires the collaborators together and exposes the webhook entry
point used by main.py.

Architecture overview:
  Telegram Cloud  ──webhook POST──►  Cloud Run (main.py)
                                        │
                                        ▼
                                  TelegramBotHandler.handle_webhook()
                                        │
                                        ▼
                                  ChatRouter.process()
                                        │
                          ┌─────────────┼──────────────┐
                          ▼             ▼              ▼
                    new chat        /command or      free text
                    (welcome)       button press     (completion API)
                                        │              │
                                        └──────┬───────┘
                                               ▼
                                     TelegramMessenger.send_*()

Key design decisions:
  - Raw update dicts are classified by chat_agent.classifier rather than by
    python-telegram-bot's handler chain, so routing depends on the chat's
    stored state first and on the update shape second.
  - The Bot object is only used for outbound calls (send, answer callback,
    getMe); no Application or polling loop is created.
  - Users and chat state live in Firestore (or in memory for local runs).
"""
import logging
from typing import Any, Dict, Optional

from telegram import Bot

from app.config import Settings
from app.router import ChatRouter
from app.services.completion_client import CompletionClient
from app.services.firestore_session_service import FirestoreSessionService
from app.services.memory_session_service import InMemorySessionService
from app.services.messenger import TelegramMessenger

logger = logging.getLogger(__name__)


def create_session_service(settings: Settings):
    """Build the session store selected by SESSION_BACKEND."""
    if settings.session_backend == "memory":
        logger.warning("Using in-memory session store; chat state is lost on restart")
        return InMemorySessionService()
    return FirestoreSessionService(
        project=settings.google_cloud_project,
        database=settings.firestore_database,
        collection_prefix=settings.firestore_collection_prefix,
    )


class TelegramBotHandler:
    """Handler for Telegram bot webhook integration with the completion API."""

    def __init__(
        self,
        settings: Settings,
        session_service=None,
        completion_client: Optional[CompletionClient] = None,
        bot: Optional[Bot] = None,
    ):
        """Initialize Telegram bot handler.

        Note: This only stores references. The Bot connection is opened later
        in initialize() because it requires async setup.

        Args:
            settings: Runtime configuration (token, API URL, model, ...).
            session_service: Session store; built from settings if None.
            completion_client: Completion client; built from settings if None.
            bot: python-telegram-bot Bot; built from the token if None.
        """
        self.settings = settings
        self.bot = bot or Bot(token=settings.telegram_bot_token)
        self.session_service = session_service or create_session_service(settings)
        self.completion_client = completion_client or CompletionClient(
            api_url=settings.completion_api_url,
            api_key=settings.completion_api_key,
            timeout=settings.completion_timeout,
        )
        self.messenger = TelegramMessenger(self.bot)
        self.router = ChatRouter(
            session_service=self.session_service,
            messenger=self.messenger,
            completion_client=self.completion_client,
            model=settings.completion_model,
        )
        self._initialized = False

    async def initialize(self):
        """Open the Bot API connection. Called once at startup (from main.py)."""
        if self._initialized:
            return
        await self.bot.initialize()
        self._initialized = True
        logger.info("Telegram bot initialized")

    async def shutdown(self):
        """Release the Bot, HTTP and Firestore resources."""
        if self._initialized:
            await self.bot.shutdown()
            self._initialized = False
        await self.completion_client.aclose()
        await self.session_service.close()

    async def get_me(self):
        return await self.bot.get_me()

    # ------------------------------------------------------------------
    # Webhook entry point (called by main.py's FastAPI route)
    # ------------------------------------------------------------------

    async def handle_webhook(self, update_data: Dict[str, Any]) -> int:
        """Handle an incoming webhook POST from Telegram.

        Telegram sends one update per webhook call; it is processed as a
        batch of one. Failures inside the update are contained by the router.

        Args:
            update_data: Raw JSON dict from Telegram's webhook POST body.

        Returns:
            Number of updates confirmed.
        """
        return await self.router.process([update_data])
