"""Runtime configuration read from environment variables."""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from chat_agent.constants import (
    DEFAULT_COLLECTION_PREFIX,
    DEFAULT_COMPLETION_MODEL,
    DEFAULT_COMPLETION_TIMEOUT,
    DEFAULT_COMPLETION_URL,
    DEFAULT_DATABASE,
)

logger = logging.getLogger(__name__)

SESSION_BACKENDS = ("firestore", "memory")


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str = ""
    telegram_webhook_secret: Optional[str] = None
    completion_api_url: str = DEFAULT_COMPLETION_URL
    completion_api_key: Optional[str] = None
    completion_model: str = DEFAULT_COMPLETION_MODEL
    completion_timeout: float = DEFAULT_COMPLETION_TIMEOUT
    session_backend: str = "firestore"
    google_cloud_project: Optional[str] = None
    firestore_database: str = DEFAULT_DATABASE
    firestore_collection_prefix: str = DEFAULT_COLLECTION_PREFIX
    app_env: str = "production"

    @classmethod
    def from_env(cls) -> "Settings":
        backend = os.environ.get("SESSION_BACKEND", "firestore").lower()
        if backend not in SESSION_BACKENDS:
            raise RuntimeError(
                f"Unknown SESSION_BACKEND '{backend}'. Allowed: {', '.join(SESSION_BACKENDS)}"
            )
        return cls(
            telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN", ""),
            telegram_webhook_secret=os.environ.get("TELEGRAM_WEBHOOK_SECRET") or None,
            completion_api_url=os.environ.get("COMPLETION_API_URL", DEFAULT_COMPLETION_URL),
            completion_api_key=os.environ.get("COMPLETION_API_KEY") or None,
            completion_model=os.environ.get("COMPLETION_MODEL", DEFAULT_COMPLETION_MODEL),
            completion_timeout=float(
                os.environ.get("COMPLETION_TIMEOUT_SECONDS", DEFAULT_COMPLETION_TIMEOUT)
            ),
            session_backend=backend,
            google_cloud_project=os.environ.get("GOOGLE_CLOUD_PROJECT") or None,
            firestore_database=os.environ.get("FIRESTORE_DATABASE", DEFAULT_DATABASE),
            firestore_collection_prefix=os.environ.get(
                "FIRESTORE_COLLECTION_PREFIX", DEFAULT_COLLECTION_PREFIX
            ),
            app_env=os.environ.get("APP_ENV", "production").lower(),
        )

    def missing_required(self) -> list[str]:
        """Names of required environment variables that are not set."""
        missing = []
        if not self.telegram_bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        if not self.completion_api_url:
            missing.append("COMPLETION_API_URL")
        if self.session_backend == "firestore" and not self.google_cloud_project:
            missing.append("GOOGLE_CLOUD_PROJECT")
        return missing

    def validate(self) -> None:
        """Log missing variables; refuse to start in production."""
        missing = self.missing_required()
        if not missing:
            return
        logger.error(f"Missing required environment variables: {missing}")
        if self.app_env == "production":
            raise RuntimeError("Missing required environment variables")
