from __future__ import annotations
import json
import logging
import datetime as dt
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from askai.core.errors import ConfigurationError

LOGGER_NAME = "askai"
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": dt.datetime.fromtimestamp(record.created, dt.timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _level(raw: Any) -> int:
    if isinstance(raw, int):
        return raw
    level = logging.getLevelName(str(raw).upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level '{raw}'")
    return level


def configure_logging(log_cfg: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """
    Set up the 'askai' logger from the `log` config section:
      file, level (info), format (text|json), max_size_mb (10), max_backups (3)
    Without a file the logger gets a NullHandler; nothing is ever written to
    the terminal.
    """
    log_cfg = log_cfg or {}
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_level(log_cfg.get("level", "info")))
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    fmt = str(log_cfg.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigurationError(f"log.format must be 'text' or 'json', got '{fmt}'")

    file = log_cfg.get("file")
    if not file:
        logger.addHandler(logging.NullHandler())
        return logger

    path = Path(str(file)).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    fh = RotatingFileHandler(
        path,
        maxBytes=int(log_cfg.get("max_size_mb", 10)) * 1024 * 1024,
        backupCount=int(log_cfg.get("max_backups", 3)),
        encoding="utf-8",
    )
    fh.setFormatter(JsonFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(fh)
    return logger
