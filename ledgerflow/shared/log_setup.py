"""Logging setup for entry points (CLI, workers).

Library modules only create module-level loggers; configuring handlers is
left to whatever process embeds them.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the platform format.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
