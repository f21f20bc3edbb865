from __future__ import annotations

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def tx_commit(session: AsyncSession):
    """
    Commit transaction: commit on success, roll back on any error.

    Works whether or not the session already auto-began a transaction; reads
    issued before the block become part of the same unit.

    Mutating services run this *inside* their batch-lock scope so the commit
    lands before the next writer of the same batch may read it.
    """
    try:
        yield
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
