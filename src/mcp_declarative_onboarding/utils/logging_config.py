"""Logging configuration for the onboarding engine.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing helpers for device calls and pipeline phases

Environment Variables:
    ONBOARD_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    ONBOARD_LOG_FILE: Path to log file (default: ~/.onboarding/onboarding.log)
    ONBOARD_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    ONBOARD_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from mcp_declarative_onboarding.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("device_request")
    async def _request(self, ...):
        ...

    # Or use context manager for sections:
    async with timed_section("apply", device_id="bigip1", task_id=task_id):
        ...
"""
import asyncio
import functools
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

PACKAGE_LOGGER = "mcp_declarative_onboarding"

# Timing lines go to their own file, not the package log
perf_logger = logging.getLogger("onboarding.perf")

LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-25s | %(levelname)-7s | %(message)s"
PERF_FORMAT = "%(asctime)s.%(msecs)03d | PERF | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_file: Optional[str] = None, level: Optional[str] = None) -> Path:
    """Configure package and performance logging.

    Console output (stderr) follows the configured level; the rotating log
    file and the performance log next to it capture everything. Calling it
    again replaces the handlers installed by the previous call.

    Args:
        log_file: Log file path. Defaults to ONBOARD_LOG_FILE or ~/.onboarding/onboarding.log
        level: Console level name. Defaults to ONBOARD_LOG_LEVEL or INFO

    Returns:
        Path of the main log file
    """
    level_name = (level or os.environ.get("ONBOARD_LOG_LEVEL", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    path = Path(log_file or os.environ.get("ONBOARD_LOG_FILE") or Path.home() / ".onboarding" / "onboarding.log")
    max_bytes = int(os.environ.get("ONBOARD_LOG_MAX_SIZE", "10")) * 1024 * 1024
    backups = int(os.environ.get("ONBOARD_LOG_BACKUPS", "5"))

    path.parent.mkdir(parents=True, exist_ok=True)

    # stderr: stdout carries the MCP stdio protocol
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    perf_handler = RotatingFileHandler(
        path.parent / "onboarding-perf.log", maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
    )
    perf_handler.setFormatter(logging.Formatter(PERF_FORMAT, datefmt=DATE_FORMAT))

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    for logger, handlers in ((pkg_logger, (console_handler, file_handler)), (perf_logger, (perf_handler,))):
        for old in list(logger.handlers):
            old.close()
            logger.removeHandler(old)
        logger.setLevel(logging.DEBUG)
        for handler in handlers:
            logger.addHandler(handler)
    perf_logger.propagate = False

    pkg_logger.info(f"Logging initialized: level={logging.getLevelName(console_level)}, file={path}")
    return path


def _perf_line(operation: str, device_id: Optional[str], elapsed: float, status: str, extra_str: str = "") -> str:
    msg = f"{operation:20s} | {device_id or 'N/A':15s} | {elapsed:8.2f}ms | {status}"
    if extra_str:
        msg += f" | {extra_str}"
    return msg


def timed(operation: str, device_id: Optional[str] = None):
    """Decorator to log execution time of sync/async functions.

    Args:
        operation: Name of the operation (e.g., "device_request", "read_device")
        device_id: Optional device identifier (can also be inferred from self.device_id)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            dev_id = device_id
            if dev_id is None and args and hasattr(args[0], 'device_id'):
                dev_id = args[0].device_id

            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.info(_perf_line(operation, dev_id, elapsed, "OK"))
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_perf_line(operation, dev_id, elapsed, f"FAIL: {e}"))
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            dev_id = device_id
            if dev_id is None and args and hasattr(args[0], 'device_id'):
                dev_id = args[0].device_id

            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.info(_perf_line(operation, dev_id, elapsed, "OK"))
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_perf_line(operation, dev_id, elapsed, f"FAIL: {e}"))
                raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, device_id: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Args:
        operation: Name of the operation
        device_id: Device identifier
        **extra: Additional context to log

    Usage:
        async with timed_section("domain:network", device_id="bigip1", operations=4):
            await handler.process(plan_slice, client)
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.info(_perf_line(operation, device_id, elapsed, "OK", extra_str))
    except BaseException as e:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.warning(_perf_line(operation, device_id, elapsed, f"FAIL: {e!r}", extra_str))
        raise
