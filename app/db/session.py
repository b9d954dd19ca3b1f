"""Transaction scope for balance-affecting writes."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from pymongo.errors import ConnectionFailure, OperationFailure

from app.core.config import get_settings
from app.core.exceptions import StorageConflictError
from app.core.logging import get_logger
from app.db.init import get_client

log = get_logger(__name__)

T = TypeVar("T")

WRITE_CONFLICT_CODE = 112


@asynccontextmanager
async def transaction() -> AsyncIterator[Any]:
    """
    Yield a Motor session inside a multi-document transaction, or None when
    transactions are disabled (standalone mongod, in-memory test client).
    Commits on normal exit, aborts on exception.
    """
    if not get_settings().mongodb_transactions:
        yield None
        return
    async with await get_client().start_session() as session:
        async with session.start_transaction():
            yield session


def _is_transient(exc: Exception) -> bool:
    if exc.has_error_label("TransientTransactionError"):
        return True
    return isinstance(exc, OperationFailure) and exc.code == WRITE_CONFLICT_CODE


async def run_in_transaction(
    operation: Callable[[Any], Awaitable[T]],
    attempts: int | None = None,
) -> T:
    """
    Run operation(session) in a transaction, retrying transient conflicts.
    Only errors the server labels transient are retried: the aborted
    transaction left no trace, so a retry cannot double-apply.
    """
    attempts = attempts or get_settings().storage_retry_attempts
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            async with transaction() as session:
                return await operation(session)
        except (ConnectionFailure, OperationFailure) as e:
            if not _is_transient(e):
                raise
            last_exc = e
            log.warning("storage_conflict_retry", attempt=attempt, attempts=attempts, error=str(e))
    raise StorageConflictError() from last_exc
