"""
Utility functions for the marketplace import backend.
Includes retry logic for the storage layer and CSV cell coercion helpers.
"""
import asyncio
import functools
import logging
import random
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Type, Tuple, Optional, Any
from sqlalchemy.exc import (
    OperationalError,
    InterfaceError,
    TimeoutError as SQLAlchemyTimeoutError,
    DisconnectionError,
)

logger = logging.getLogger(__name__)

# Transient database errors that should be retried
TRANSIENT_DB_ERRORS: Tuple[Type[Exception], ...] = (
    OperationalError,
    InterfaceError,
    SQLAlchemyTimeoutError,
    DisconnectionError,
    ConnectionError,
    TimeoutError,
)

NULL_TOKENS = {"", "null", "none", "nan", "n/a", "-"}


def utc_now() -> datetime:
    """Naive UTC timestamp, the same convention parsed CSV dates are stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_transient_error(exc: Exception) -> bool:
    """Check if an exception is a transient error that should be retried."""
    if isinstance(exc, TRANSIENT_DB_ERRORS):
        return True

    error_msg = str(exc).lower()
    transient_patterns = [
        "connection refused",
        "connection reset",
        "connection timed out",
        "timeout",
        "too many connections",
        "server closed the connection",
        "could not connect",
        "temporarily unavailable",
        "database is locked",  # SQLite under concurrent writers
        "40001",  # Serialization failure (PostgreSQL)
    ]
    return any(pattern in error_msg for pattern in transient_patterns)


def retry_async(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    exponential_backoff: bool = True,
    jitter: bool = True,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
):
    """
    Decorator for async functions that retries on transient failures.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_backoff: Whether to use exponential backoff
        jitter: Whether to add random jitter to delays
        retry_on: Tuple of exception types to retry on (defaults to transient DB errors)
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if retry_on:
                        should_retry = isinstance(e, retry_on)
                    else:
                        should_retry = is_transient_error(e)

                    if not should_retry or attempt >= max_retries:
                        raise

                    if exponential_backoff:
                        delay = min(base_delay * (2 ** attempt), max_delay)
                    else:
                        delay = base_delay

                    if jitter:
                        delay = delay * (0.5 + random.random())  # 50-150% of delay

                    logger.warning(
                        f"Retry {attempt + 1}/{max_retries} for {func.__name__} "
                        f"after {delay:.2f}s due to: {type(e).__name__}: {str(e)[:100]}"
                    )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator


def clean_cell(value: Optional[Any], max_length: int = 1000) -> str:
    """Strip whitespace, BOMs and null bytes from a raw CSV cell."""
    if value is None:
        return ""
    cleaned = str(value).replace("\x00", "").replace("\ufeff", "").strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned


def as_decimal(value: Optional[Any], default: str = "0") -> Decimal:
    """Parse a money-ish cell ("₹1,299.00", "12.5") into a Decimal."""
    text = clean_cell(value)
    if text.lower() in NULL_TOKENS:
        return Decimal(default)
    text = text.replace(",", "").replace("₹", "").replace("INR", "").replace("$", "").strip()
    try:
        parsed = Decimal(str(text or default))
    except InvalidOperation:
        return Decimal(default)
    return parsed if parsed.is_finite() else Decimal(default)


def as_int(value: Optional[Any], default: int = 0) -> int:
    text = clean_cell(value)
    if text.lower() in NULL_TOKENS:
        return default
    try:
        return int(Decimal(text.replace(",", "")))
    except (InvalidOperation, ValueError, OverflowError):
        return default
