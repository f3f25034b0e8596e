"""
Structured Logging System - structlog over stdlib logging.

Console (or JSON) output, rotating files, sensitive value masking and a
small timing helper used around decision cycles.
"""

from __future__ import annotations

import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict

import structlog


# ---------------------------------------------------------------------------
# Sensitive Data Filter
# ---------------------------------------------------------------------------

_SENSITIVE_KEYS = ("api_key", "secret", "password", "token", "private_key")
# Keys that contain "token" but carry token ids, not credentials.
_NOT_SENSITIVE = {"token_in", "token_out"}


def _mask_sensitive(_, __, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask sensitive data in log output (API keys, passwords, etc.)."""
    for key in list(event_dict.keys()):
        lowered = key.lower()
        if lowered in _NOT_SENSITIVE:
            continue
        if any(s in lowered for s in _SENSITIVE_KEYS):
            value = str(event_dict[key])
            if len(value) > 8:
                event_dict[key] = value[:4] + "****" + value[-4:]
            else:
                event_dict[key] = "****"
    return event_dict


# ---------------------------------------------------------------------------
# Performance Timer
# ---------------------------------------------------------------------------

class PerformanceTimer:
    """Context manager for measuring and logging operation duration."""

    def __init__(self, logger: Any, operation: str, slow_ms: float = 1000.0, **kwargs):
        self.logger = logger
        self.operation = operation
        self.slow_ms = slow_ms
        self.kwargs = kwargs
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        if exc_type:
            self.logger.error(
                f"{self.operation} failed",
                duration_ms=self.elapsed_ms,
                error=str(exc_val),
                **self.kwargs
            )
        else:
            level = "warning" if self.elapsed_ms > self.slow_ms else "debug"
            getattr(self.logger, level)(
                f"{self.operation} completed",
                duration_ms=self.elapsed_ms,
                **self.kwargs
            )
        return False


# ---------------------------------------------------------------------------
# Logger Setup
# ---------------------------------------------------------------------------

def setup_logging(
    log_level: str = "INFO",
    log_dir: str = "logs",
    json_output: bool = False
) -> None:
    """
    Configure the structured logging system.

    Sets up:
    - Console output with colors (or JSON for production)
    - File output with rotation
    - Error-level separate file
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)

    main_handler = RotatingFileHandler(
        log_path / "astroswap.log", encoding="utf-8",
        maxBytes=20 * 1024 * 1024, backupCount=5,
    )
    main_handler.setLevel(level)

    error_handler = RotatingFileHandler(
        log_path / "errors.log", encoding="utf-8",
        maxBytes=5 * 1024 * 1024, backupCount=3,
    )
    error_handler.setLevel(logging.ERROR)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # Close and remove existing handlers to avoid duplicates and FD leaks
    for h in root_logger.handlers[:]:
        h.close()
        root_logger.removeHandler(h)
    root_logger.addHandler(main_handler)
    root_logger.addHandler(error_handler)
    root_logger.addHandler(console_handler)

    # httpx logs full request URLs at INFO, gateway keys included.
    for noisy in ("httpx", "httpcore", "websockets", "asyncio", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _mask_sensitive,
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True, pad_event=40)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    for handler in root_logger.handlers:
        handler.setFormatter(formatter)


def get_logger(name: str = "astroswap") -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance with the given name."""
    return structlog.get_logger(name)


def log_performance(logger: Any, operation: str, **kwargs) -> PerformanceTimer:
    """Create a performance timing context manager."""
    return PerformanceTimer(logger, operation, **kwargs)
