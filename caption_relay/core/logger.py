import logging
from typing import Optional

from caption_relay.core.config import get_settings

_configured = False


def _configure_root_logger() -> None:
    global _configured
    if _configured:
        return
    level = logging.getLevelName(get_settings().LOG_LEVEL.upper())
    logging.basicConfig(
        level=level if isinstance(level, int) else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module logger with consistent formatting.

    If not yet configured, configures the root logger once using LOG_LEVEL.
    """
    _configure_root_logger()
    return logging.getLogger(name or "caption_relay")
