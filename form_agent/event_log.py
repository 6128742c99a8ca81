import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _format_value(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    text = str(value)
    if not text or any(ch.isspace() for ch in text):
        return json.dumps(text)
    return text


def format_event(event_code: str, fields: Dict[str, Any]) -> str:
    """Renders 'EVT-XXX-NN key=value ...' keeping field order."""
    parts = [event_code]
    parts.extend(f"{key}={_format_value(value)}" for key, value in fields.items())
    return " ".join(parts)


def log_event(logger: logging.Logger, level: str, event_code: str, **fields: Any) -> None:
    """Emits one structured event line through a module logger."""
    logger.log(_LEVELS.get(level.upper(), logging.INFO), format_event(event_code, fields))


def setup_logging(config: Optional[Dict[str, Any]] = None, level: int = logging.INFO) -> str:
    """
    Configures root logging with a rotating UTF-8 file handler and a console handler.

    Returns:
        str: The log file path in use.
    """
    config = config or {}
    log_file_path = config.get('paths', {}).get('log_file', os.path.join("logs", "form_agent.log"))
    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            RotatingFileHandler(log_file_path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding='utf-8'),
            stream_handler,
        ],
        force=True,
    )
    return log_file_path
