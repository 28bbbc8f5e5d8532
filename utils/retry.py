import asyncio
import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from config import Config
from utils.errors import ConflictError

T = TypeVar("T")


async def run_with_retries(
    db: Session,
    operation: Callable[[], T],
    *,
    label: str = "db.transaction",
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
) -> T:
    """Run a synchronous transactional `operation`, retrying on contention.

    OperationalError (lock wait timeouts, deadlocks, serialization failures)
    rolls the session back and waits ``base_delay * 2**attempt`` before the
    next try. When the attempts are used up the failure surfaces as a
    ConflictError.
    """
    attempts = attempts if attempts is not None else Config.DB_RETRY_ATTEMPTS
    base_delay = base_delay if base_delay is not None else Config.DB_RETRY_BASE_DELAY

    for attempt in range(max(attempts, 1)):
        try:
            return operation()
        except OperationalError as e:
            db.rollback()
            logging.warning("%s contention attempt=%s error=%s", label, attempt + 1, e.orig)
            if attempt + 1 >= attempts:
                break
            await asyncio.sleep(base_delay * (2 ** attempt))

    logging.error("%s retries exhausted attempts=%s", label, attempts)
    raise ConflictError("The trip is being modified concurrently, please retry")
