# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Firestore-based store for Telegram users and chat state.

Each chat that ever talked to the bot owns two documents, both keyed by the
Telegram chat id:

Firestore document layout:
  {prefix}_users/{chat_id}
      └── fields: chat_id, first_name, last_name, username, create_time
  {prefix}_chat_config/{chat_id}
      └── fields: chat_id, chat_state, create_time, update_time

Typical flow:
  1. The router receives an update and calls find_user() / find_session().
  2. If neither exists, create_chat() writes both documents in one batch.
  3. Existing chats are routed by the stored chat_state.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Optional

from google.api_core import exceptions as api_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.async_client import AsyncClient

from chat_agent.constants import (
    COLLECTION_CHAT_CONFIG,
    COLLECTION_USERS,
    DEFAULT_COLLECTION_PREFIX,
    DEFAULT_DATABASE,
)
from chat_agent.models import ChatSession, UserProfile

logger = logging.getLogger(__name__)


class FirestoreSessionService:
    """A session store that keeps users and chat state in Google Cloud Firestore."""

    def __init__(
        self,
        project: Optional[str] = None,
        database: str = DEFAULT_DATABASE,
        collection_prefix: str = DEFAULT_COLLECTION_PREFIX,
        client: Optional[AsyncClient] = None,
    ):
        """Initializes the Firestore session store.

        The Firestore client is created lazily on the first request (not here)
        to avoid blocking the event loop at import time and to let the
        environment variables (GOOGLE_CLOUD_PROJECT, etc.) settle first.

        Args:
            project: The Google Cloud project ID. If None, uses the default
                     project from the environment (GOOGLE_CLOUD_PROJECT).
            database: The Firestore database ID to use.
            collection_prefix: Prefix for collection names, so one database
                               can host several bots ("chat_ai_users").
            client: Pre-built async client (tests inject a mock here).
        """
        self._project = project
        self._database = database
        self._collection_prefix = collection_prefix
        self._client: Optional[AsyncClient] = client
        # Lock ensures only one coroutine creates the client.
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> AsyncClient:
        """Gets or creates the async Firestore client (double-checked locking)."""
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    self._client = AsyncClient(
                        project=self._project,
                        database=self._database,
                    )
        return self._client

    def _get_collection_name(self, name: str) -> str:
        """Gets the full collection name with prefix."""
        return f"{self._collection_prefix}_{name}"

    async def _user_ref(self, chat_id: int):
        client = await self._get_client()
        return client.collection(self._get_collection_name(COLLECTION_USERS)).document(
            str(chat_id)
        )

    async def _session_ref(self, chat_id: int):
        client = await self._get_client()
        return client.collection(
            self._get_collection_name(COLLECTION_CHAT_CONFIG)
        ).document(str(chat_id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_user(self, chat_id: int) -> Optional[UserProfile]:
        """Returns the stored profile for a chat, or None."""
        doc = await (await self._user_ref(chat_id)).get()
        if not doc.exists:
            return None
        return UserProfile.from_dict(doc.to_dict())

    async def find_session(self, chat_id: int) -> Optional[ChatSession]:
        """Returns the stored chat state for a chat, or None."""
        doc = await (await self._session_ref(chat_id)).get()
        if not doc.exists:
            return None
        return ChatSession.from_dict(doc.to_dict())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _user_data(profile: UserProfile) -> dict:
        data = profile.to_dict()
        data["create_time"] = firestore.SERVER_TIMESTAMP
        return data

    @staticmethod
    def _session_data(session: ChatSession) -> dict:
        data = session.to_dict()
        data["create_time"] = firestore.SERVER_TIMESTAMP
        data["update_time"] = firestore.SERVER_TIMESTAMP
        return data

    async def create_user(self, profile: UserProfile) -> bool:
        """Creates a user document. Returns False if it already existed."""
        user_ref = await self._user_ref(profile.chat_id)
        try:
            await user_ref.create(self._user_data(profile))
        except api_exceptions.AlreadyExists:
            return False
        return True

    async def create_session(self, session: ChatSession) -> bool:
        """Creates a chat_config document. Returns False if it already existed."""
        session_ref = await self._session_ref(session.chat_id)
        try:
            await session_ref.create(self._session_data(session))
        except api_exceptions.AlreadyExists:
            return False
        return True

    async def create_chat(self, profile: UserProfile, session: ChatSession) -> bool:
        """Creates the user and chat_config documents together.

        Both writes go in one batch using create(), so the commit fails as a
        whole if either document already exists. Two concurrent first
        messages from the same chat therefore produce one user, not two.

        Returns:
            True if this call created the chat, False if it already existed.
        """
        if profile.chat_id != session.chat_id:
            raise ValueError("profile and session must share a chat_id")

        client = await self._get_client()
        batch = client.batch()
        batch.create(await self._user_ref(profile.chat_id), self._user_data(profile))
        batch.create(await self._session_ref(session.chat_id), self._session_data(session))
        try:
            await batch.commit()
        except api_exceptions.AlreadyExists:
            logger.info(f"Chat {profile.chat_id} already exists, skipping creation")
            return False
        logger.info(f"Created user and chat config for chat {profile.chat_id}")
        return True

    async def close(self) -> None:
        """Closes the Firestore client and releases its network resources.

        Safe to call multiple times; the next request creates a fresh client.
        """
        if self._client:
            result = self._client.close()
            if inspect.isawaitable(result):
                await result
            self._client = None
