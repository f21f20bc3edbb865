from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Iterable, List, Optional, Set

from medstock.core.errors import BusyError, InconsistentStateError
from medstock.obs.metrics import batch_lock_wait_seconds

log = logging.getLogger("medstock.locks")


class BatchLockRegistry:
    """
    In-process mutex map keyed by batch_id.

    - every quantity mutation of a batch runs while holding that batch's lock
    - multi-batch scopes acquire in ascending batch_id order (no lock cycles)
    - acquisition is bounded by a timeout; running out raises BusyError
    - quarantined batches (after a failed compensation) refuse new scopes

    On PostgreSQL the services additionally take row locks (FOR UPDATE); this
    registry is what serializes writers on SQLite and inside one process.

    Locks are created on demand and dropped once nobody holds or waits for
    them, so an entry never outlives the event loop that used it.

    The quarantine set lives in this process only and is gone after a
    restart. What survives is the drift itself: ``StockLedger.reconcile_all``
    (``GET /transactions/mismatches``) finds every batch whose quantity
    disagrees with its ledger sum, and ``reconcile_batch(repair=True)`` fixes
    it. Run that check after restarting a process that reported quarantined
    batches.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = float(timeout)
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}
        self._quarantined: Set[int] = set()

    # ------------------------------------------------------------------
    # quarantine
    # ------------------------------------------------------------------

    def quarantine(self, batch_ids: Iterable[int]) -> None:
        ids = {int(b) for b in batch_ids}
        self._quarantined |= ids
        log.error("batches quarantined until reconciled: %s", sorted(ids))

    def release_quarantine(self, batch_id: int) -> bool:
        if int(batch_id) in self._quarantined:
            self._quarantined.discard(int(batch_id))
            log.warning("quarantine lifted for batch %s", batch_id)
            return True
        return False

    def is_quarantined(self, batch_id: int) -> bool:
        return int(batch_id) in self._quarantined

    @property
    def quarantined(self) -> List[int]:
        return sorted(self._quarantined)

    # ------------------------------------------------------------------
    # locking
    # ------------------------------------------------------------------

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: Hashable) -> None:
        n = self._users.get(key, 0) - 1
        if n <= 0:
            self._users.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._users[key] = n

    def is_locked(self, batch_id: int) -> bool:
        lock = self._locks.get(int(batch_id))
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(
        self,
        batch_ids: Iterable[int],
        *,
        timeout: Optional[float] = None,
        allow_quarantined: bool = False,
    ) -> AsyncIterator[List[int]]:
        """
        Hold the locks of every batch in ``batch_ids`` for the block.

        The timeout covers the whole acquisition, not each lock.
        ``allow_quarantined`` is for reconciliation only.
        """
        ids = sorted({int(b) for b in batch_ids})
        bad = [b for b in ids if b in self._quarantined]
        if bad and not allow_quarantined:
            raise InconsistentStateError(
                "batch is quarantined after a failed compensation; reconcile it first",
                bad,
            )

        budget = self.timeout if timeout is None else float(timeout)
        deadline = time.monotonic() + budget
        acquired: List[int] = []
        try:
            for bid in ids:
                lock = self._checkout(bid)
                remaining = deadline - time.monotonic()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    await asyncio.wait_for(lock.acquire(), timeout=remaining)
                except asyncio.TimeoutError:
                    self._checkin(bid)
                    log.warning("batch lock timeout: wanted=%s held=%s", ids, acquired)
                    raise BusyError(ids, budget) from None
                except BaseException:
                    self._checkin(bid)
                    raise
                acquired.append(bid)
            batch_lock_wait_seconds.observe(budget - max(0.0, deadline - time.monotonic()))
            yield ids
        finally:
            for bid in reversed(acquired):
                self._locks[bid].release()
                self._checkin(bid)

    @asynccontextmanager
    async def hold_key(self, key: str, *, timeout: Optional[float] = None) -> AsyncIterator[str]:
        """
        Exclusive scope for a non-batch key (a treatment reference).

        Always taken before any batch lock, never while holding one.
        """
        slot = f"key:{key}"
        budget = self.timeout if timeout is None else float(timeout)
        lock = self._checkout(slot)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=budget)
        except asyncio.TimeoutError:
            self._checkin(slot)
            raise BusyError([], budget) from None
        except BaseException:
            self._checkin(slot)
            raise
        try:
            yield key
        finally:
            lock.release()
            self._checkin(slot)


_registry: Optional[BatchLockRegistry] = None


def get_lock_registry() -> BatchLockRegistry:
    """Process-wide registry, sized from settings on first use."""
    global _registry
    if _registry is None:
        from medstock.core.config import get_settings

        _registry = BatchLockRegistry(timeout=get_settings().BATCH_LOCK_TIMEOUT_SECONDS)
    return _registry
