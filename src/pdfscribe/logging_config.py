"""Logging configuration for pdfscribe.

Everything goes through loguru. Logs from LiteLLM, the HTTP clients,
instructor and the imaging libraries are intercepted from the standard
``logging`` module and re-emitted through the same handlers.
"""

from __future__ import annotations

import logging
import os
import sys
import warnings
from datetime import datetime
from pathlib import Path
from typing import Any

from click import Context
from loguru import logger

from pdfscribe import __version__
from pdfscribe.constants import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_LOG_RETENTION,
    DEFAULT_LOG_ROTATION,
)

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{message}</cyan>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <5} | {module}:{line: <3} | {message}"

# Third-party loggers to intercept and route to loguru
INTERCEPTED_LOGGERS = [
    # LiteLLM and its components
    "LiteLLM",
    "LiteLLM Router",
    "litellm",
    # HTTP clients
    "httpx",
    "httpcore",
    # Instructor (structured output)
    "instructor",
    # OpenAI client
    "openai",
    # PDF and imaging
    "pymupdf",
    "fitz",
    "PIL",
    "PIL.Image",
    "PIL.PngImagePlugin",
    # Async
    "asyncio",
]

# Warning messages to suppress (regex patterns)
SUPPRESSED_WARNINGS = [
    # LiteLLM async cleanup
    r"coroutine 'close_litellm_async_clients' was never awaited",
    # Pydantic field warnings
    r"Field .* has conflict with protected namespace",
    # Pydantic serializer warnings from litellm response models
    r"Pydantic serializer warnings",
    # httpx warnings
    r"Async methods should be used with an async client",
]

# Console INFO messages shown outside verbose mode
MILESTONE_KEYWORDS = ["Written", "Saved", "Complete", "finished", "Extracted"]


class LoggingContext:
    """Context manager that suspends console logging.

    Used while a rich progress display owns the terminal.

    Usage:
        logging_ctx = LoggingContext(console_handler_id, verbose)
        with logging_ctx.suspend_console():
            ...
    """

    def __init__(self, console_handler_id: int | None, verbose: bool = False) -> None:
        self.original_handler_id = console_handler_id
        self.verbose = verbose
        self._current_handler_id: int | None = console_handler_id
        self._suspended = False

    @property
    def current_handler_id(self) -> int | None:
        """Get the current console handler ID."""
        return self._current_handler_id

    def suspend_console(self) -> LoggingContext:
        return self

    def __enter__(self) -> LoggingContext:
        if self._current_handler_id is not None and not self._suspended:
            try:
                logger.remove(self._current_handler_id)
                self._suspended = True
            except ValueError:
                self._current_handler_id = None  # Removed elsewhere
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._suspended:
            self._current_handler_id = logger.add(
                sys.stderr,
                level="INFO",
                format=CONSOLE_FORMAT,
                filter=lambda record: _should_show_log(record, self.verbose),
            )
            self._suspended = False


class InterceptHandler(logging.Handler):
    """Intercept standard logging and forward to loguru.

    Uses the record's own location info rather than frame tracing.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.bind(
            name=record.name,
            module=record.module,
            function=record.funcName,
            line=record.lineno,
        ).opt(exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    verbose: bool,
    log_dir: str | None = None,
    log_level: str = DEFAULT_LOG_LEVEL,
    rotation: str = DEFAULT_LOG_ROTATION,
    retention: str = DEFAULT_LOG_RETENTION,
    quiet: bool = False,
) -> tuple[int | None, Path | None]:
    """Configure logging.

    Args:
        verbose: Show progress INFO messages on the console, not just milestones.
        log_dir: Directory for log files. Supports ~ expansion.
                 Can be overridden by PDFSCRIBE_LOG_DIR env var.
        log_level: Log level for file output.
        rotation: Log file rotation size.
        retention: Log file retention period.
        quiet: If True, disable console logging entirely.

    Returns:
        Tuple of (console_handler_id, log_file_path). The file path is None
        when file logging is disabled.
    """
    _setup_warning_filters()

    logger.remove()

    # DEBUG goes to file only; console shows INFO+ with filter
    console_handler_id: int | None = None
    if not quiet:
        console_handler_id = logger.add(
            sys.stderr,
            level="INFO",
            format=CONSOLE_FORMAT,
            filter=lambda record: _should_show_log(record, verbose),
        )

    env_log_dir = os.environ.get("PDFSCRIBE_LOG_DIR")
    if env_log_dir:
        log_dir = env_log_dir

    log_file_path: Path | None = None
    if log_dir:
        log_path = Path(log_dir).expanduser()
        log_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        log_file_path = log_path / f"pdfscribe_{timestamp}.log"
        logger.add(
            log_file_path,
            level=log_level,
            rotation=rotation,
            retention=retention,
            format=FILE_FORMAT,
        )

    _setup_log_interception()

    return console_handler_id, log_file_path


def _setup_warning_filters() -> None:
    """Configure warning filters to suppress noisy dependency warnings."""
    for pattern in SUPPRESSED_WARNINGS:
        warnings.filterwarnings("ignore", message=pattern)

    warnings.filterwarnings("ignore", category=UserWarning, module="pydantic")
    warnings.filterwarnings(
        "ignore",
        message=r"coroutine .* was never awaited",
        category=RuntimeWarning,
    )


def _setup_log_interception() -> None:
    """Route third-party library logs to loguru, WARNING+ only."""
    intercept_handler = InterceptHandler()

    for logger_name in INTERCEPTED_LOGGERS:
        stdlib_logger = logging.getLogger(logger_name)
        stdlib_logger.handlers.clear()
        stdlib_logger.addHandler(intercept_handler)
        stdlib_logger.propagate = False
        stdlib_logger.setLevel(logging.WARNING)


def _is_third_party_log(name: str, module: str) -> bool:
    """Check if a log comes from an intercepted library.

    Uses exact or dotted-prefix matching so "PIL" does not match "compiler".
    """
    name_lower = name.lower()
    module_lower = module.lower()

    for intercepted in INTERCEPTED_LOGGERS:
        intercepted_lower = intercepted.lower()
        if name_lower == intercepted_lower or name_lower.startswith(
            f"{intercepted_lower}."
        ):
            return True
        if module_lower == intercepted_lower:
            return True

    return False


def _should_show_log(record: Any, verbose: bool) -> bool:
    """Filter function for console logging.

    Args:
        record: Loguru Record object
        verbose: Whether verbose mode is enabled

    Returns:
        True if the log should be shown
    """
    level = record["level"].name

    # DEBUG never goes to console (file only)
    if level == "DEBUG":
        return False

    if level in ("WARNING", "ERROR", "CRITICAL"):
        return True

    name = record.get("extra", {}).get("name", "")
    module = record.get("extra", {}).get("module", "")

    if level == "INFO" and _is_third_party_log(name, module):
        return False

    if not verbose and level == "INFO":
        msg = record.get("message", "")
        if not any(kw in msg for kw in MILESTONE_KEYWORDS):
            return False

    return True


def print_version(ctx: Context, param: Any, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    from rich.console import Console

    Console().print(f"pdfscribe {__version__}")
    ctx.exit(0)
