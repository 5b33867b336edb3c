"""Dark/light theme preference persisted under its own storage key."""

import logging

from .storage import THEME_KEY, KeyValueStorage

logger = logging.getLogger(__name__)

DARK = "dark"
LIGHT = "light"


class ThemePreference:
    """Theme flag read once at startup and written back on every toggle."""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        self.is_dark: bool = storage.get(THEME_KEY) == DARK

    @property
    def value(self) -> str:
        return DARK if self.is_dark else LIGHT

    def toggle(self) -> str:
        """Flip the theme, persist it and return the new value."""
        self.is_dark = not self.is_dark
        self.storage.set(THEME_KEY, self.value)
        logger.info(f"Theme switched to {self.value}")
        return self.value
