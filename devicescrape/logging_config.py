"""Logging configuration for the pipeline.

Console output is for the operator; the JSONL file is the audit trail. Every
pipeline event (page loads, unmatched slugs, LLM calls, job transitions) is
logged with an ``event_type`` and its data as top-level JSON fields, so a
failed import can be reconstructed from one day's file.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from devicescrape.config import LOG_DIR

__all__ = [
    "setup_logging",
    "get_logger",
    "log_scrape_event",
    "ROOT_LOGGER",
]

ROOT_LOGGER = "devicescrape"

# Third-party loggers held at WARNING
_QUIET_LOGGERS = ("urllib3", "httpx", "openai", "werkzeug")


class JSONLFileHandler(logging.Handler):
    """Appends one JSON object per record to ``<prefix>_<YYYYMMDD>.jsonl``."""

    def __init__(self, log_dir: Path, prefix: str = ROOT_LOGGER):
        super().__init__()
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix

    def path_for(self, when: datetime) -> Path:
        return self.log_dir / f"{self.prefix}_{when:%Y%m%d}.jsonl"

    def to_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event_type = getattr(record, "event_type", None)
        if event_type:
            entry["event_type"] = event_type
            entry.update(getattr(record, "event_data", {}))
        if record.exc_info:
            entry["traceback"] = logging.Formatter().formatException(record.exc_info)
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.to_entry(record), ensure_ascii=False, default=str)
            with open(self.path_for(datetime.now()), "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except Exception:
            self.handleError(record)


class ColoredFormatter(logging.Formatter):
    """Colors the level name when writing to a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool):
        super().__init__("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S")
        self.use_color = use_color

    def formatMessage(self, record: logging.LogRecord) -> str:
        if not self.use_color or record.levelname not in self.COLORS:
            return super().formatMessage(record)
        # Work on a copy; the file handler sees the same record
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().formatMessage(colored)


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """Set up logging for the pipeline.

    Args:
        level: Console logging level (default: INFO); the file gets everything
        log_to_file: Whether to write the JSONL audit file
        log_to_console: Whether to log to stdout
        log_dir: Custom log directory (default: configured LOG_DIR)

    Returns:
        Configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if log_to_file else level)
    logger.handlers.clear()
    logger.propagate = False

    if log_to_console:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(ColoredFormatter(use_color=sys.stdout.isatty()))
        logger.addHandler(console)

    if log_to_file:
        logger.addHandler(JSONLFileHandler(log_dir or LOG_DIR))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger under the package namespace ('jobs' -> 'devicescrape.jobs')."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def log_scrape_event(
    event_type: str,
    data: Dict[str, Any],
    level: int = logging.INFO,
    logger_name: str = "events",
) -> None:
    """Log a structured pipeline event.

    Args:
        event_type: e.g. 'comparison_loaded', 'unmatched_slugs', 'llm_call', 'job_transition'
        data: Event fields; an optional 'message' becomes the log message
        level: Log level
        logger_name: Logger under the package namespace
    """
    fields = {k: v for k, v in data.items() if k != "message"}
    get_logger(logger_name).log(
        level,
        data.get("message", event_type),
        extra={"event_type": event_type, "event_data": fields},
    )
