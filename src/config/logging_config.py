"""
Logging bootstrap shared by the command-line entry points.
"""

import logging

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# HTTP client libraries log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "urllib3")


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging and quiet the HTTP client loggers."""
    logging.basicConfig(level=level, format=LOG_FORMAT)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
