# logging_config.py

import logging
import json
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

EXECUTION = 25
SUCCESS = 26

# level name -> (number, Logger method name)
CUSTOM_LEVELS = {
    "EXECUTION": (EXECUTION, "execution"),
    "SUCCESS": (SUCCESS, "success"),
}

HUMAN_FORMAT = '%(asctime)s - %(levelname)s - [%(module)s:%(lineno)d] - %(message)s'
MAX_LOG_BYTES = 5 * 1024 * 1024

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _level_method(level: int):
    def log_at_level(self, message, *args, **kws):
        if self.isEnabledFor(level):
            self._log(level, message, args, **kws)
    return log_at_level


def setup_custom_log_levels():
    """
    Registers the EXECUTION and SUCCESS levels and the matching Logger methods
    (`log.execution(...)`, `log.success(...)`). Safe to call repeatedly.
    """
    for name, (level, method) in CUSTOM_LEVELS.items():
        if not hasattr(logging, name):
            logging.addLevelName(level, name)
            setattr(logging, name, level)
        if not hasattr(logging.Logger, method):
            setattr(logging.Logger, method, _level_method(level))


def get_logger(name: str) -> logging.Logger:
    """Returns a module logger with the custom levels available."""
    setup_custom_log_levels()
    return logging.getLogger(name)


# --- JSON Formatter for Structured Logging ---
class JsonFormatter(logging.Formatter):
    """One JSON object per record, including any `extra` fields."""
    def format(self, record):
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
            "lineNo": record.lineno,
        }
        entry.update((k, v) for k, v in vars(record).items() if k not in _RESERVED_ATTRS and k not in entry)
        if record.exc_info:
            entry['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _rotating_handler(path: str, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=2)
    handler.setFormatter(formatter)
    return handler


def setup_logging(logging_cfg: Optional[Dict[str, Any]] = None):
    """
    Configures the root logger from the `logging` config section: a human-readable
    file, a JSON file and the console. A file output whose path is null is skipped.
    """
    setup_custom_log_levels()
    cfg = logging_cfg or {}

    root = logging.getLogger()
    level = logging.getLevelName(str(cfg.get('level', 'INFO')).upper())
    root.setLevel(level if isinstance(level, int) else logging.INFO)

    # Clear any existing handlers
    if root.hasHandlers():
        root.handlers.clear()

    human_formatter = logging.Formatter(HUMAN_FORMAT)
    outputs = [
        (cfg.get('log_file', 'engine.log'), human_formatter),
        (cfg.get('json_log_file', 'engine_structured.log'), JsonFormatter()),
    ]
    for path, formatter in outputs:
        if path:
            root.addHandler(_rotating_handler(path, formatter))

    console = logging.StreamHandler()
    console.setFormatter(human_formatter)
    root.addHandler(console)

    root.info("Logging configured at %s (file=%s, json=%s).",
              logging.getLevelName(root.level), outputs[0][0], outputs[1][0])
