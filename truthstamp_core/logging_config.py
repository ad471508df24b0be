"""
Logging configuration for TruthStamp.

Two console formats:
  - **human** – single line, coloured when the stream is a terminal
  - **json**  – newline-delimited JSON for log aggregators

Records may carry stamp context through ``extra`` (``fingerprint``,
``handle``, ``address``); the JSON format emits those keys, and for a
logged ``TruthStampError`` also its ``kind`` and ``context``.  Nothing in
the package logs key material, passwords or recovery phrases.

Usage:
    from truthstamp_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="~/.truth-stamped/stamp.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from truthstamp_core.errors import TruthStampError

CONTEXT_FIELDS = ("fingerprint", "handle", "address")

# Chatty below WARNING and not useful to someone stamping a file.
_QUIET_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.internal", "asyncio")


class _StampJSONFormatter(logging.Formatter):
    """One JSON object per record, with stamp context when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            if isinstance(exc, TruthStampError):
                entry["error_kind"] = exc.kind
                entry["error_context"] = exc.context
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL] logger: message``; ANSI colour only on a TTY."""

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"[{record.levelname:<7}]"
        if self.colour:
            level = f"{self.COLOURS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[1]:
            line += f" ({type(record.exc_info[1]).__name__})"
        return line


def setup_logging(
    level: str = "WARNING",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger for the runner.

    Parameters
    ----------
    level : str
        DEBUG, INFO, WARNING, ERROR or CRITICAL; anything else means WARNING.
    fmt : str
        ``"human"`` or ``"json"`` for the console (stderr).
    log_file : str, optional
        Additional JSON log file; ``~`` is expanded and parent directories
        are created.
    """
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.WARNING

    root = logging.getLogger()
    root.setLevel(numeric)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if getattr(handler, "_truthstamp", False):
            handler.close()

    # stderr, so stdout carries only command output
    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(_StampJSONFormatter())
    else:
        console.setFormatter(_ConsoleFormatter(colour=sys.stderr.isatty()))
    handlers: list[logging.Handler] = [console]

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path), encoding="utf-8")
        fh.setFormatter(_StampJSONFormatter())
        handlers.append(fh)

    for handler in handlers:
        handler._truthstamp = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))
