"""
Logging configuration.

Library modules only create module loggers with logging.getLogger(__name__);
handlers are installed by the application, here by the CLI.
"""

import logging
import os
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(
    level: Optional[Union[str, int]] = None, fmt: str = DEFAULT_FORMAT
) -> int:
    """Configure root logging for command-line use.

    Args:
        level: Level name or number, defaults to $LOG_LEVEL or INFO
        fmt: Log record format

    Returns:
        The numeric level that was applied

    Raises:
        ValueError: If level is not a known level name
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        name = level.upper()
        numeric = logging.getLevelName(name)
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level!r}")
        level = numeric
    logging.basicConfig(level=level, format=fmt, force=True)
    # onnxruntime and transformers are chatty at INFO
    logging.getLogger("transformers").setLevel(max(level, logging.WARNING))
    return level
