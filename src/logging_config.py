"""Logging setup shared by the scheduler and the command-line scripts."""
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Client libraries that log every HTTP request at INFO
NOISY_LOGGERS = ("urllib3", "googleapiclient", "google_auth_oauthlib", "openai", "httpx", "sqlalchemy", "apscheduler")


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger once per process.

    Args:
        level: Log level name; unknown names fall back to INFO
        log_file: Optional path for a rotating file handler (10 MB x 5)
    """
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5))

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Library chatter stays quiet unless we are debugging
    if root.level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
