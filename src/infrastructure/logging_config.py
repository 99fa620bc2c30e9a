from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from src.infrastructure.config import Settings

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if settings.log_json:
        handler.setFormatter(JsonFormatter(_JSON_FORMAT, json_ensure_ascii=False))
    else:
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    root.addHandler(handler)

    for noisy in ("httpx", "httpcore", "hpack", "urllib3", "PIL"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
