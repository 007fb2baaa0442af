"""
Transaction Utilities for the Campus Market Backend
===================================================

Every multi-row state change in the order and payment flows runs inside a
``UnitOfWork``: a thin, explicit wrapper over ``transaction.atomic`` that the
caller can abort without raising, and that defers side effects (event
publishing) until the commit has happened.

Usage Examples:
    # Commit or roll back as a unit
    with UnitOfWork("checkout") as uow:
        reserve(...)
        create_orders(...)
        uow.on_commit(lambda: publish(...))

    # Dry run: perform every write, then discard them
    with UnitOfWork("reconcile") as uow:
        release(...)
        uow.abort()

Nested units of work become savepoints of the enclosing one.
"""

import logging
import time
from typing import Callable

from django.db import transaction

logger = logging.getLogger(__name__)


class UnitOfWork:
    """
    Explicit transactional scope for a business operation.

    All writes made inside the ``with`` block commit together or not at all.
    An exception escaping the block rolls everything back and propagates.
    ``abort()`` rolls back without raising, which callers use for dry runs
    and for "nothing to do" outcomes detected halfway through.

    Callbacks registered with ``on_commit`` run only once the outermost
    transaction commits and are discarded on rollback.
    """

    def __init__(self, name: str = "unit_of_work", using: str = "default"):
        self.name = name
        self.using = using
        self.aborted = False
        self._atomic = None
        self._started_at = 0.0

    def __enter__(self) -> "UnitOfWork":
        self._started_at = time.perf_counter()
        self._atomic = transaction.atomic(using=self.using)
        self._atomic.__enter__()
        logger.debug(f"Unit of work '{self.name}' started")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        elapsed = (time.perf_counter() - self._started_at) * 1000
        try:
            self._atomic.__exit__(exc_type, exc, tb)
        finally:
            self._atomic = None

        if exc_type is not None:
            logger.warning(f"Unit of work '{self.name}' rolled back after {elapsed:.2f}ms: {exc}")
        elif self.aborted:
            logger.info(f"Unit of work '{self.name}' aborted after {elapsed:.2f}ms")
        else:
            logger.debug(f"Unit of work '{self.name}' committed in {elapsed:.2f}ms")
        return False

    def abort(self) -> None:
        """Discard every write made in this unit of work once the block exits."""
        self.aborted = True
        transaction.set_rollback(True, using=self.using)

    def on_commit(self, func: Callable[[], None]) -> None:
        """Run ``func`` after a successful commit."""
        transaction.on_commit(func, using=self.using)
