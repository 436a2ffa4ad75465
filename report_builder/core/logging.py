"""
Structured logging configuration for the report builder engine.
"""
import logging
import sys
from typing import Optional, Union


def setup_logging(name: Optional[str] = None, level: Union[int, str, None] = None) -> logging.Logger:
    """
    Set up structured logging for the engine.

    Args:
        name: Logger name (typically __name__ from calling module)
        level: Logging level (default: LOG_LEVEL from settings)

    Returns:
        Configured logger instance
    """
    if level is None:
        from report_builder.core.config import get_settings
        level = get_settings().LOG_LEVEL
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    # Configure root logger if not already configured
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.StreamHandler(sys.stdout)]
        )

    # Return named logger
    logger = logging.getLogger(name or __name__)
    logger.setLevel(level)

    return logger
