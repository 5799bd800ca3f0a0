"""Display-mode setting shared with observers."""

import logging

logger = logging.getLogger(__name__)

DISPLAY_MODES = ("desktop", "icon")
DEFAULT_DISPLAY_MODE = "desktop"


class DisplaySettings:
    """In-memory holder for the heart rate display mode."""

    def __init__(self, mode: str = DEFAULT_DISPLAY_MODE):
        if mode not in DISPLAY_MODES:
            logger.warning("Unknown display mode '%s', using '%s'", mode, DEFAULT_DISPLAY_MODE)
            mode = DEFAULT_DISPLAY_MODE
        self._mode = mode

    @property
    def mode(self) -> str:
        return self._mode

    def set_mode(self, mode: str) -> bool:
        """Switch the display mode; returns False for an unknown mode."""
        if mode not in DISPLAY_MODES:
            return False
        self._mode = mode
        logger.info("Display mode set to %s", mode)
        return True
