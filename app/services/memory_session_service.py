"""In-process session store for local runs (SESSION_BACKEND=memory) and tests."""
import asyncio
import logging
from typing import Dict, Optional

from chat_agent.models import ChatSession, UserProfile

logger = logging.getLogger(__name__)


class InMemorySessionService:
    """Same interface as FirestoreSessionService, backed by dicts."""

    def __init__(self):
        self._users: Dict[int, UserProfile] = {}
        self._sessions: Dict[int, ChatSession] = {}
        self._lock = asyncio.Lock()

    async def find_user(self, chat_id: int) -> Optional[UserProfile]:
        return self._users.get(chat_id)

    async def find_session(self, chat_id: int) -> Optional[ChatSession]:
        return self._sessions.get(chat_id)

    async def create_user(self, profile: UserProfile) -> bool:
        async with self._lock:
            if profile.chat_id in self._users:
                return False
            self._users[profile.chat_id] = profile
        return True

    async def create_session(self, session: ChatSession) -> bool:
        async with self._lock:
            if session.chat_id in self._sessions:
                return False
            self._sessions[session.chat_id] = session
        return True

    async def create_chat(self, profile: UserProfile, session: ChatSession) -> bool:
        if profile.chat_id != session.chat_id:
            raise ValueError("profile and session must share a chat_id")
        async with self._lock:
            if profile.chat_id in self._users or session.chat_id in self._sessions:
                return False
            self._users[profile.chat_id] = profile
            self._sessions[session.chat_id] = session
        logger.info(f"Created user and chat config for chat {profile.chat_id}")
        return True

    async def close(self) -> None:
        return None
