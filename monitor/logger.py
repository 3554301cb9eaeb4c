"""
Logging setup for the trading loop.

Three outputs:
  - stderr: colored console lines, each tagged with the trading mode
  - <log_dir>/run_YYYYMMDD_HHMMSS.log: everything at DEBUG
  - optional ndjson file for log shippers

Execution code passes trade fields through `extra=` (mapping_id, venue,
state, quantity, pnl); the JSON formatter copies whichever are present.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

TRADE_FIELDS = ("mapping_id", "venue", "state", "quantity", "pnl")

_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_DEFAULT_LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "logs")

_ANSI = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "yellow": "\033[33m",
    "cyan": "\033[36m",
    "critical": "\033[1;41;37m",
}

# levelname -> (style, three-letter tag)
_LEVELS = {
    "DEBUG": ("dim", "DBG"),
    "INFO": ("cyan", "INF"),
    "WARNING": ("yellow", "WRN"),
    "ERROR": ("red", "ERR"),
    "CRITICAL": ("critical", "CRT"),
}


class ModeFilter(logging.Filter):
    """Stamps every record with the trading mode (dry_run, paper, live)."""

    def __init__(self, mode: str = "") -> None:
        super().__init__()
        self.mode = mode

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "mode"):
            record.mode = self.mode
        return True


class ConsoleFormatter(logging.Formatter):
    def __init__(self, use_color: bool = True, mode: str = ""):
        super().__init__()
        self._use_color = use_color and _supports_color()
        self._default_mode = mode

    def _paint(self, style: str, text: str) -> str:
        if not self._use_color:
            return text
        return f"{_ANSI[style]}{text}{_ANSI['reset']}"

    def format(self, record: logging.LogRecord) -> str:
        style, tag = _LEVELS.get(record.levelname, ("dim", "???"))
        mode = (getattr(record, "mode", "") or self._default_mode).upper()
        parts = [
            self._paint("dim", time.strftime("%H:%M:%S", time.localtime(record.created))),
            self._paint(style, tag),
        ]
        if mode:
            parts.append(self._paint("dim", f"[{mode}]"))
        parts.append(record.getMessage())
        line = " ".join(parts)

        if record.exc_info and record.exc_info[1]:
            line += "\n" + self._paint("red", f"     {record.exc_info[1]}")
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with the mode and any trade fields attached."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        mode = getattr(record, "mode", "")
        if mode:
            entry["mode"] = mode
        for name in TRADE_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, separators=(",", ":"), default=str)


def setup_logging(
    level: str = "INFO",
    json_log_file: str | None = None,
    log_dir: str | None = None,
    mode: str = "",
) -> str:
    """
    Replace the root logger's handlers. Returns the verbose log path.

    The console honours `level`; the files always get DEBUG.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(logging.DEBUG)

    mode_filter = ModeFilter(mode)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(ConsoleFormatter(mode=mode))

    log_dir = log_dir or _DEFAULT_LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, f"run_{datetime.now(timezone.utc):%Y%m%d_%H%M%S}.log")
    verbose = logging.FileHandler(log_path, mode="a")
    verbose.setLevel(logging.DEBUG)
    verbose.setFormatter(logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)-8s [%(mode)s] %(name)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    handlers: list[logging.Handler] = [console, verbose]
    if json_log_file:
        shipper = logging.FileHandler(json_log_file, mode="a")
        shipper.setFormatter(JSONFormatter())
        handlers.append(shipper)

    for handler in handlers:
        handler.addFilter(mode_filter)
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_path


def _supports_color() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
