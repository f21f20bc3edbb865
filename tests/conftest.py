# tests/conftest.py
from __future__ import annotations

import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from medstock.api import deps
from medstock.core import locks as locks_mod
from medstock.core.locks import BatchLockRegistry
from medstock.db.base import Base, init_models
from medstock.db.engine import create_async_engine_safe
from medstock.main import app

# ==========================
# DSN: explicit MEDSTOCK_TEST_DATABASE_URL, else a throwaway sqlite file
# ==========================
TEST_DATABASE_URL = os.getenv("MEDSTOCK_TEST_DATABASE_URL")


# =========================================
# one engine per test (NullPool, no cross-loop reuse)
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'medstock-test.db'}"
    engine = create_async_engine_safe(url, poolclass=NullPool)
    init_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# fresh lock registry per test (quarantine state must not leak)
# =========================================
@pytest.fixture(autouse=True)
def lock_registry() -> BatchLockRegistry:
    reg = BatchLockRegistry(timeout=5.0)
    locks_mod._registry = reg
    yield reg
    locks_mod._registry = None


# =========================================
# HTTP client over ASGI, sessions from the test engine
# =========================================
@pytest_asyncio.fixture
async def client(async_session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[deps.get_session] = _override_session
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.pop(deps.get_session, None)
