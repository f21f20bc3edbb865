# tests/unit/test_batch_locks.py
from __future__ import annotations

import asyncio

import pytest

from medstock.core.errors import BusyError, InconsistentStateError
from medstock.core.locks import BatchLockRegistry

pytestmark = pytest.mark.contract


@pytest.mark.asyncio
async def test_hold_sorts_and_dedups_ids():
    reg = BatchLockRegistry(timeout=1.0)
    async with reg.hold([5, 2, 9, 2]) as held:
        assert held == [2, 5, 9]
        assert all(reg.is_locked(b) for b in held)
    assert not any(reg.is_locked(b) for b in (2, 5, 9))


@pytest.mark.asyncio
async def test_locks_are_dropped_when_unused():
    reg = BatchLockRegistry(timeout=1.0)
    async with reg.hold([1, 2]):
        pass
    assert reg._locks == {}
    assert reg._users == {}


@pytest.mark.asyncio
async def test_second_writer_waits_for_the_first():
    reg = BatchLockRegistry(timeout=2.0)
    order = []

    async def writer(tag, delay):
        async with reg.hold([1]):
            order.append(f"{tag}-in")
            await asyncio.sleep(delay)
            order.append(f"{tag}-out")

    first = asyncio.create_task(writer("a", 0.05))
    await asyncio.sleep(0.01)
    await asyncio.gather(first, writer("b", 0))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_timeout_raises_busy_and_releases_partial_locks():
    reg = BatchLockRegistry(timeout=0.05)
    async with reg.hold([2]):
        with pytest.raises(BusyError) as ei:
            async with reg.hold([1, 2]):
                pass  # pragma: no cover
        assert ei.value.retryable
        assert ei.value.batch_ids == [1, 2]
        # batch 1 was acquired first and must be free again
        assert not reg.is_locked(1)
    assert reg._locks == {}


@pytest.mark.asyncio
async def test_overlapping_sets_do_not_deadlock():
    reg = BatchLockRegistry(timeout=2.0)
    done = []

    async def job(ids, tag):
        async with reg.hold(ids):
            await asyncio.sleep(0.01)
            done.append(tag)

    await asyncio.gather(job([1, 2, 3], "x"), job([3, 2, 1], "y"), job([2, 3], "z"))
    assert sorted(done) == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_quarantined_batch_refuses_scopes_until_released():
    reg = BatchLockRegistry(timeout=1.0)
    reg.quarantine([4])
    assert reg.quarantined == [4]

    with pytest.raises(InconsistentStateError) as ei:
        async with reg.hold([3, 4]):
            pass  # pragma: no cover
    assert ei.value.batch_ids == [4]

    async with reg.hold([4], allow_quarantined=True) as held:
        assert held == [4]

    assert reg.release_quarantine(4) is True
    assert reg.release_quarantine(4) is False
    async with reg.hold([3, 4]):
        pass


@pytest.mark.asyncio
async def test_hold_key_serializes_same_key():
    reg = BatchLockRegistry(timeout=0.05)
    async with reg.hold_key("TRT-1"):
        with pytest.raises(BusyError):
            async with reg.hold_key("TRT-1"):
                pass  # pragma: no cover
        async with reg.hold_key("TRT-2"):
            pass
    assert reg._locks == {}
