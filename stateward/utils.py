"""
Utility functions for stateward.

Includes logging setup and result formatting (json, yaml, rich tables).
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from stateward.errors import ValidationError

LOGGER_NAME = "stateward"

OUTPUT_FORMATS = ("table", "json", "yaml")


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def setup_logging(
    log_file: Optional[Path],
    log_level: str = "INFO",
    log_format: str = "structured",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for a stateward invocation.

    Args:
        log_file: Path to log file (None disables the file handler)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON file, plain console) or "pretty" (rich console)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.handlers = []  # Clear existing handlers
    logger.propagate = False

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        log_file.parent.chmod(0o700)

        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(rich_tracebacks=True, show_time=False, show_path=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        logger.addHandler(console_handler)

    return logger


def reset_logging() -> None:
    """Close and drop every handler on the stateward logger."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "phase"):
            log_data["phase"] = record.phase
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def validate_format(output_format: str, allowed: Sequence[str] = OUTPUT_FORMATS) -> str:
    if output_format not in allowed:
        raise ValidationError(
            f"Invalid format: {output_format}. Must be one of: {', '.join(allowed)}"
        )
    return output_format


def dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def dump_yaml(data: Any) -> str:
    # Round-trip through JSON so datetimes and Paths become plain strings
    return yaml.safe_dump(json.loads(json.dumps(data, default=str)), sort_keys=False)


def render_table(
    title: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
) -> Table:
    """Build a rich Table from plain rows."""
    table = Table(title=title, title_justify="left")
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*["" if cell is None else str(cell) for cell in row])
    return table


def render(data: Any, output_format: str, table: Optional[Table] = None) -> str:
    """
    Render ``data`` as json or yaml text, or ``table`` as plain text.

    Tables are rendered through a recording console so the result can be
    passed to click.echo (and captured by CliRunner).
    """
    if output_format == "json":
        return dump_json(data)
    if output_format == "yaml":
        return dump_yaml(data).rstrip("\n")
    if table is None:
        return dump_yaml(data).rstrip("\n")
    recorder = Console(record=True, width=120, force_terminal=False, color_system=None)
    with recorder.capture() as capture:
        recorder.print(table)
    return capture.get().rstrip("\n")
