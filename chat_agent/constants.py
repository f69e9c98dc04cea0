"""Constants and fixed lookup tables for the chat AI bot."""
from enum import Enum
from typing import Optional

# Firestore Collection Names (prefixed at runtime, e.g. "chat_ai_users")
COLLECTION_USERS = "users"
COLLECTION_CHAT_CONFIG = "chat_config"

# App Configuration
APP_NAME = "chat_agent"
DEFAULT_DATABASE = "(default)"
DEFAULT_COLLECTION_PREFIX = "chat_ai"
DEFAULT_COMPLETION_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_COMPLETION_MODEL = "gpt-3.5-turbo"
DEFAULT_COMPLETION_TIMEOUT = 60  # seconds

# Telegram limits
COMMAND_PREFIX = "/"
MAX_MESSAGE_LENGTH = 4096

# Message keys that carry media instead of text.
MEDIA_KEYS = (
    "photo",
    "document",
    "video",
    "audio",
    "voice",
    "sticker",
    "animation",
    "video_note",
)

# Callback tokens carried by the inline menu buttons.
CALLBACK_SUPPORT = "support"
CALLBACK_SAFETY = "safety"
CALLBACK_HELP = "help"


class ChatState(str, Enum):
    """Persisted lifecycle phase of a chat."""

    NEW = "new"
    ACTIVE = "active"
    # Declared for future lifecycle transitions; nothing moves a chat here yet.
    DORMANT = "dormant"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["ChatState"]:
        if value is None:
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


class ButtonType(str, Enum):
    CALLBACK = "callback"
    URL = "url"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["ButtonType"]:
        if value is None:
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


class Command(str, Enum):
    """Slash commands the bot answers itself (token without the prefix)."""

    START = "start"
    HELP = "help"
    MENU = "menu"
    SAFETY = "safety"
    SUPPORT = "support"

    @classmethod
    def from_token(cls, token: Optional[str]) -> Optional["Command"]:
        """Case-insensitive lookup of a command token.

        A trailing "@botname" (group chats) is ignored; any other text after
        the command name makes it an unknown command.
        """
        if not token:
            return None
        name = token.split("@", 1)[0]
        try:
            return cls(name.lower())
        except ValueError:
            return None


class Messages:
    """Outbound message texts."""

    WELCOME = (
        "👋 Welcome to the Chat AI bot!\n\n"
        "Just type your question and I'll forward it to the AI assistant.\n"
        "Type /help to see what else I can do."
    )
    STARTING_OVER = "Well, one more time from the beginning 🙂"
    HELP = """Here are all available commands:

/start - Start over
/help - Show this help
/menu - Open the menu
/safety - Safety guidelines
/support - Contact support

💡 Tip: anything you type that isn't a command is sent to the AI assistant."""
    MENU_HEADER = "Choose an option:"
    SAFETY = (
        "🛡️ Safety guidelines\n\n"
        "Do not share passwords, card numbers or other personal data in this chat. "
        "AI answers can be inaccurate; double-check anything important."
    )
    SUPPORT = (
        "🆘 Support\n\n"
        "If something isn't working, write to our support team and describe "
        "what happened. Include the time of your last message."
    )
    UNKNOWN_COMMAND = "There is no such command."
    CANNOT_PROCESS_MEDIA = "Sorry, I can't process photos or other media, only text messages."
    NO_RESPONSE = "The AI assistant returned no response. Please try rephrasing your question."
    OH_SOMETHING_WENT_WRONG = "Oh, something went wrong: "
    YOU_NEED_TO_CALL_SUPPORT = "\nPlease try again later or contact support (/support)."
