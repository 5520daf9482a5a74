"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from adaptive_fetch.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "anthropic._base_client",
    "asyncio",
)


def configure_logging(
    level: str | None = None,
    log_dir: str | None = None,
    noisy_level: str | None = None,
) -> None:
    """(Re)install the console sink and, when a log dir is given, a daily file sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=(level or settings.app_log_level).upper(),
        colorize=True,
    )

    target_dir = log_dir if log_dir is not None else settings.log_dir
    if target_dir:
        path = Path(target_dir)
        path.mkdir(parents=True, exist_ok=True)
        logger.add(
            path / "adaptive_fetch_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
        )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel((noisy_level or settings.noisy_log_level).upper())


configure_logging()


def log_strategy_attempt(
    url: str,
    strategy: str,
    status: str,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log one scraping strategy attempt."""
    attempt_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "url": url,
        "strategy": strategy,
        "status": status,
        "duration_ms": duration_ms,
        "error": error,
    }
    if status == "auth_error":
        logger.warning(f"STRATEGY_AUTH_FAILED: {attempt_data}")
    elif error:
        logger.debug(f"STRATEGY_FAILED: {attempt_data}")
    else:
        logger.info(f"STRATEGY_SUCCEEDED: {attempt_data}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log an LLM API call."""
    call_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "model": model,
        "caller": caller,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "duration_ms": duration_ms,
        "status": status,
        "error": error,
    }
    if error:
        logger.error(f"LLM_CALL_FAILED: {call_data}")
    else:
        logger.info(f"LLM_CALL: {call_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
