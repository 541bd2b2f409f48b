import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    echo=settings.echo_sql,
    pool_pre_ping=True,
    pool_recycle=3600,
)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

T = TypeVar("T")

# MySQL lock wait timeout / deadlock, plus dropped connections.
_RETRYABLE_ERROR_CODES = {1205, 1213, 2006, 2013}
_RETRYABLE_ERROR_SNIPPETS = (
    "server has gone away",
    "lost connection",
    "deadlock",
)


def is_retryable_db_error(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int) and args[0] in _RETRYABLE_ERROR_CODES:
        return True
    message = str(exc).lower()
    return any(snippet in message for snippet in _RETRYABLE_ERROR_SNIPPETS)


def _retry_delay(attempt: int) -> float:
    base = 0.1 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


async def with_db_retry_async(
    op_name: str,
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
) -> T:
    """Retry an idempotent unit of work on transient store failures.

    `func` must open and commit its own transaction so every attempt starts
    from a clean session state.
    """
    attempt = 1
    while True:
        try:
            return await func()
        except OperationalError as exc:
            if attempt >= max_attempts or not is_retryable_db_error(exc):
                raise
            delay = _retry_delay(attempt)
            logger.warning(
                "Transient DB failure detected, retrying",
                extra={
                    "event": "db_retry",
                    "op": op_name,
                    "attempt": attempt,
                    "delay": delay,
                    "error": str(exc),
                },
            )
            await asyncio.sleep(delay)
            attempt += 1
