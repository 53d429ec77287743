"""Logging configuration for the voice agent."""
import logging
import sys
from voice_agent.core.config import settings

# HTTP client loggers print full request lines at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging() -> None:
    """Configure application logging (stdout, level from LOG_LEVEL)."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


logger = logging.getLogger("voice_agent")
