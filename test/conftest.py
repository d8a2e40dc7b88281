"""Pytest configuration for the Stonegate operations test suite."""

import os
import sys
from pathlib import Path

import pytest_asyncio


def _ensure_test_env() -> None:
    """Seed required environment variables for tests."""
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    os.environ.setdefault("LOG_JSON", "false")
    os.environ.setdefault("GOOGLE_CALENDAR_ENABLED", "false")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))
sys.path.insert(0, str(ROOT / "test"))


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    """Provide an async sqlite session factory backed by a temp file."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from models import Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'stonegate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
