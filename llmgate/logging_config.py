"""Logging configuration for the gateway."""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict


class StructuredFormatter(logging.Formatter):
    """Formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Formatter for coloured console output."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        log_parts = [
            f"{color}{self.BOLD}[{record.levelname}]{self.RESET}",
            timestamp,
            f"{color}{record.name}{self.RESET}",
            f"- {record.getMessage()}",
        ]

        # Location info for errors
        if record.levelno >= logging.ERROR:
            log_parts.append(f"({record.filename}:{record.lineno})")

        if record.exc_info:
            log_parts.append(f"\n  └─ Exception:\n{self.formatException(record.exc_info)}")

        return " ".join(log_parts)


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> logging.Logger:
    """
    Configure the ``llmgate`` logger hierarchy.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Emit structured JSON lines instead of coloured text.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("llmgate")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if json_format else ColoredConsoleFormatter())
    logger.addHandler(handler)

    return logger
