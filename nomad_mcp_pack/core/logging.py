import logging

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str = "info") -> None:
    """
    Configure root logging for the watcher process.

    Replaces any existing root handlers with a single stream handler.

    Raises:
        ValueError: If ``level`` is not a known logging level name.
    """
    numeric_level = logging.getLevelName(level.strip().upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"invalid log level: {level}")

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, force=True)

    noisy_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)
