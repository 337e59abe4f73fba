from __future__ import annotations
import logging

_format = "%(levelname)s: %(message)s"
logging.basicConfig(format=_format)

logger = logging.getLogger("jellyfin-tags")
logger.setLevel(logging.INFO)


def set_level(level: str | int) -> None:
    """Override the default level, e.g. "DEBUG" to also see unchanged items.

    Raises ValueError for anything that is not a standard level name or number.
    """
    if isinstance(level, str):
        name = level.strip().upper()
        if name not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level {level!r}")
        level = logging.getLevelNamesMapping()[name]
    elif not isinstance(level, int) or level < 0:
        raise ValueError(f"Unknown log level {level!r}")
    logger.setLevel(level)
