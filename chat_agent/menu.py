"""Inline menu buttons and their callback lookup."""
from enum import Enum
from typing import Optional

from .constants import CALLBACK_HELP, CALLBACK_SAFETY, CALLBACK_SUPPORT, ButtonType
from .models import MenuButton


class Button(Enum):
    SUPPORT = MenuButton(
        label="🆘 Support",
        kind=ButtonType.CALLBACK,
        callback_data=CALLBACK_SUPPORT,
    )
    SAFETY = MenuButton(
        label="🛡️ Safety",
        kind=ButtonType.CALLBACK,
        callback_data=CALLBACK_SAFETY,
    )
    HELP = MenuButton(
        label="❓ Help",
        kind=ButtonType.CALLBACK,
        callback_data=CALLBACK_HELP,
    )

    @classmethod
    def from_callback(cls, data: Optional[str]) -> Optional["Button"]:
        """Exact-match lookup of a button by its callback token."""
        if data is None:
            return None
        for button in cls:
            if button.value.callback_data == data:
                return button
        return None


# The menu sent for /menu, top to bottom.
MAIN_MENU = (Button.SUPPORT, Button.SAFETY, Button.HELP)
