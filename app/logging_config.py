import logging
import os

from pythonjsonlogger import jsonlogger

# Libraries that log every HTTP request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "telegram.ext")


def setup_logging() -> None:
    """Configure structured JSON logging for Cloud Run."""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    handler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "severity"},
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers = [handler]

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
