"""Process-wide logging setup."""

import logging

from hedgebot.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Third-party loggers that are chatty at INFO
_NOISY_LOGGERS = ("httpx", "apscheduler.executors.default", "websockets.client")


def setup_logging(level: str | None = None):
    """Configure the root logger once. Safe to call repeatedly."""
    level_name = (level or settings.log_level).upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level_name, format=LOG_FORMAT)
    root.setLevel(level_name)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
