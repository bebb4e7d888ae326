"""Bounded retry of persistence operations on transient database errors."""

import asyncio
import functools
import logging

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from raisetracker.core.errors import TransientStorageError

logger = logging.getLogger("raisetracker.retry")

# Exponential backoff between attempts, in seconds.
RETRY_DELAYS: tuple[float, ...] = (0.1, 0.2, 0.4)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def retry_transient(func=None, *, delays: tuple[float, ...] | None = None):
    """Retry an ``async def op(db, ...)`` service call on transient errors.

    The session is rolled back before each retry, so the decorated function
    must be the whole unit of work for its request. Non-transient errors
    propagate immediately; after the last retry a
    :class:`TransientStorageError` is raised from the final cause.
    """

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(db, *args, **kwargs):
            schedule = RETRY_DELAYS if delays is None else delays
            for attempt in range(len(schedule) + 1):
                try:
                    return await fn(db, *args, **kwargs)
                except DBAPIError as exc:
                    if not is_transient(exc):
                        raise
                    await db.rollback()
                    if attempt == len(schedule):
                        raise TransientStorageError(fn.__qualname__) from exc
                    logger.warning(
                        "Transient database error in %s (attempt %d/%d): %s",
                        fn.__qualname__,
                        attempt + 1,
                        len(schedule) + 1,
                        exc.orig if exc.orig is not None else exc,
                    )
                    await asyncio.sleep(schedule[attempt])

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
