import os
import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | pid={extra[pid]} | {message}"

_logger_initialized = False
_sink_ids: list[int] = []


def setup_logger(log_level: str = "INFO", log_path: str | None = None):
    """Route loguru output to stderr and, optionally, a rotating file."""
    global _logger_initialized, _sink_ids

    if _logger_initialized:
        for sink_id in _sink_ids:
            logger.remove(sink_id)
    else:
        # drop loguru's default stderr handler
        logger.remove()

    logger.configure(extra={"pid": os.getpid()})

    sinks = [
        logger.add(
            sys.stderr,
            colorize=True,
            level=log_level.upper(),
            format=LOG_FORMAT,
        )
    ]

    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        sinks.append(
            logger.add(
                log_path,
                rotation="10 MB",
                retention="7 days",
                level=log_level.upper(),
                format=LOG_FORMAT,
            )
        )

    _sink_ids = sinks
    _logger_initialized = True
    return logger
