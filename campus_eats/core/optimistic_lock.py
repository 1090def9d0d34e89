"""
Campus Eats — Unit-of-work retry decorator

Orders, loyalty accounts and payments carry a version_id column
(SQLAlchemy ``version_id_col``). When two requests race on the same row the
loser's flush raises StaleDataError; the whole unit of work is rolled back
and replayed against fresh rows, with exponential backoff + jitter.

Any other exception also rolls the session back before propagating, so a
failed unit of work never leaves half-applied changes in the session.
"""
import asyncio
import random
import functools
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from campus_eats.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def _session_from(args, kwargs) -> AsyncSession:
    db = kwargs.get("db")
    if db is None and args:
        db = args[0]
    if not isinstance(db, AsyncSession):
        raise TypeError("with_optimistic_retry needs the AsyncSession as `db` (first argument).")
    return db


def with_optimistic_retry(max_retries: int | None = None):
    """
    Decorator for async unit-of-work functions whose first argument is the
    AsyncSession and which commit on success.

    Usage:
        @with_optimistic_retry()
        async def cancel_order(db, order_id, caller):
            ...
    """
    _max = max_retries or settings.OPT_LOCK_MAX_RETRIES

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            db = _session_from(args, kwargs)
            for attempt in range(1, _max + 1):
                try:
                    return await func(*args, **kwargs)
                except StaleDataError:
                    await db.rollback()
                    if attempt == _max:
                        logger.error(
                            "Optimistic lock conflict unresolved after %d retries for %s",
                            _max, func.__name__,
                        )
                        raise
                    base_delay = settings.OPT_LOCK_BASE_DELAY_MS / 1000.0
                    max_delay = settings.OPT_LOCK_MAX_DELAY_MS / 1000.0
                    jitter = random.uniform(0, settings.OPT_LOCK_JITTER_MS / 1000.0)
                    delay = min(base_delay * (2 ** attempt), max_delay) + jitter
                    logger.warning(
                        "Version conflict in %s (attempt %d/%d), replaying in %.3fs",
                        func.__name__, attempt, _max, delay,
                    )
                    await asyncio.sleep(delay)
                except Exception:
                    await db.rollback()
                    raise
        return wrapper
    return decorator
