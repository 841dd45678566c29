import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

_HANDLER_NAME = "pushgate"


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Route pushgate logs to stderr, which git relays to the pusher.

    Defaults to WARNING so an accepted push prints nothing.
    """
    level_name = (level or "WARNING").strip().upper()
    level_value = getattr(logging, level_name, logging.WARNING)
    fmt = (log_format or "text").strip().lower()

    formatter: logging.Formatter
    if fmt == "json":
        formatter = JsonLogFormatter()
    else:
        formatter = logging.Formatter("pushgate: %(levelname)s %(name)s: %(message)s")

    logger = logging.getLogger("pushgate")
    logger.setLevel(level_value)

    for handler in logger.handlers:
        if handler.get_name() == _HANDLER_NAME:
            handler.setStream(sys.stderr)
            handler.setFormatter(formatter)
            handler.setLevel(level_value)
            return

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)
    handler.setLevel(level_value)
    logger.addHandler(handler)
