from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    DEBUG = "\033[36m"
    INFO = "\033[32m"
    WARNING = "\033[33m"
    ERROR = "\033[31m"
    CRITICAL = "\033[35m"

    TIMESTAMP = "\033[90m"
    EVENT = "\033[96m"
    KEY = "\033[94m"
    NUMBER = "\033[93m"
    STRING = "\033[92m"


LEVEL_COLORS = {
    "DEBUG": Colors.DEBUG,
    "INFO": Colors.INFO,
    "WARNING": Colors.WARNING,
    "ERROR": Colors.ERROR,
    "CRITICAL": Colors.CRITICAL,
}


def _colorize_value(value: Any) -> str:
    if value is None:
        return f"{Colors.DIM}None{Colors.RESET}"
    if isinstance(value, (bool, int, float)):
        return f"{Colors.NUMBER}{value}{Colors.RESET}"
    return f"{Colors.STRING}{value}{Colors.RESET}"


class ColoredConsoleRenderer:
    """Human-readable structlog renderer; falls back to JSON when stdout is not a terminal."""

    def __init__(self, colored: bool = True) -> None:
        self.colored = colored and sys.stdout.isatty()
        self._json = structlog.processors.JSONRenderer()

    def __call__(self, logger: Any, name: str, event_dict: dict) -> str:
        if not self.colored:
            return self._json(logger, name, event_dict)

        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info").upper()
        event = event_dict.pop("event", "")
        color = LEVEL_COLORS.get(level, Colors.INFO)

        parts = []
        if timestamp:
            parts.append(f"{Colors.TIMESTAMP}[{timestamp}]{Colors.RESET}")
        parts.append(f"{color}{Colors.BOLD}{level:8}{Colors.RESET}")
        parts.append(f"{Colors.EVENT}{event}{Colors.RESET}")
        if event_dict:
            separator = f" {Colors.DIM}|{Colors.RESET} "
            pairs = (f"{Colors.KEY}{key}{Colors.RESET}={_colorize_value(value)}" for key, value in event_dict.items())
            parts.append(f"{Colors.DIM}|{Colors.RESET} " + separator.join(pairs))
        return " ".join(parts)


class ColoredFormatter(logging.Formatter):
    """Formatter for stdlib loggers (aiogram, httpx) matching the structlog console output."""

    def format(self, record: logging.LogRecord) -> str:
        if not sys.stdout.isatty():
            return super().format(record)
        color = LEVEL_COLORS.get(record.levelname, Colors.INFO)
        timestamp = self.formatTime(record, "%H:%M:%S")
        return (
            f"{Colors.TIMESTAMP}[{timestamp}]{Colors.RESET} "
            f"{color}{Colors.BOLD}{record.levelname:8}{Colors.RESET} "
            f"{Colors.DIM}{record.name}{Colors.RESET} "
            f"{record.getMessage()}"
        )


def setup_logging(level: int = logging.INFO, use_json: bool = False) -> None:
    """
    Configure structlog and stdlib logging.

    Args:
        level: Logging level (default: INFO)
        use_json: Render JSON lines instead of colored console output
    """
    renderer = structlog.processors.JSONRenderer() if use_json else ColoredConsoleRenderer(colored=True)

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(ColoredFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiogram").setLevel(logging.INFO)


def report(event: str, error: BaseException, **kwargs: Any) -> None:
    """Send a caught failure to the log sink without interrupting the caller."""
    structlog.get_logger("gatekeeper_bot.report").error(
        event,
        error=str(error) or type(error).__name__,
        error_type=type(error).__name__,
        **kwargs,
    )
