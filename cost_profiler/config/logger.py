import logging
import os
import sys
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Third-party loggers that are chatty at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "google.auth", "urllib3")


class ContextFormatter(logging.Formatter):
    """Appends ``extra={...}`` fields to the line as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {k: v for k, v in vars(record).items() if k not in _RECORD_FIELDS and not k.startswith("_")}
        if not context:
            return line
        pairs = " ".join(f"{key}={value!r}" for key, value in sorted(context.items()))
        return f"{line} | {pairs}"


def setup_logging(level: Optional[str] = None) -> None:
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_format = os.getenv("LOG_FORMAT", DEFAULT_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContextFormatter(log_format))
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[handler],
        force=True,
    )

    root_logger = logging.getLogger()
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = root_logger.handlers
        logger.setLevel(root_logger.level)
        logger.propagate = False

    if root_logger.level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
