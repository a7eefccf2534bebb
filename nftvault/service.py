"""
service.py - Shared plumbing for the vault and DPO services

A service turns a caller's request into a PendingTransaction with the pure
builders, then commits it. The base class owns the pieces every operation
needs: advancing the ledger clock, stamping request nonces, committing, and
logging rejections.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, Optional
import logging

from .core import (
    ExecuteResult, LedgerError, PendingTransaction, TransactionRejected,
    stamp_transaction,
)
from .ledger import Ledger


class LedgerService:
    """
    Base for services that write to a shared Ledger.

    Args:
        ledger: Backing store shared with other services
        clock: Optional wall clock; when given, every operation first moves
            the ledger's logical time forward to clock()
    """

    def __init__(self, ledger: Ledger, clock: Optional[Callable[[], datetime]] = None):
        self.ledger = ledger
        self._clock = clock
        self.log = logging.getLogger(type(self).__module__)

    def _tick(self) -> None:
        if self._clock is None:
            return
        now = self._clock()
        if now > self.ledger.current_time:
            self.ledger.advance_time(now)

    def _commit(self, pending: PendingTransaction) -> Optional[PendingTransaction]:
        """
        Stamp and execute pending.

        Raises:
            TransactionRejected: If the ledger rejects the transaction
        """
        if pending.is_empty():
            return None
        stamped = stamp_transaction(pending, self.ledger.next_request_id())
        result = self.ledger.execute(stamped)
        if result == ExecuteResult.REJECTED:
            raise TransactionRejected(f"ledger rejected {stamped.origin}")
        return stamped

    @contextmanager
    def _operation(self, name: str, key: object) -> Iterator[None]:
        """Log a rejected operation at WARNING and re-raise the error unchanged."""
        self._tick()
        try:
            yield
        except LedgerError as e:
            self.log.warning("%s %s rejected: %s: %s", name, key, type(e).__name__, e)
            raise
