from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from repairjourney.core.config import get_settings
from repairjourney.domain.models import Base
from repairjourney.services.consolidator import JourneyConsolidator
from repairjourney.services.persistence import ArtifactWriter
from repairjourney.services.telemetry import reset_telemetry
from repairjourney.storage.fallback import LocalFallbackStore
from repairjourney.storage.object_store import InMemoryObjectStore


@dataclass
class IndexDb:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch, tmp_path: Path) -> None:
    # Keep settings deterministic and away from any developer .env file.
    monkeypatch.setenv("OBJECT_STORE_BACKEND", "memory")
    monkeypatch.setenv("FALLBACK_STORAGE_DIR", str(tmp_path / "fallback"))
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def index_db(tmp_path: Path) -> IndexDb:
    # Throwaway relational index per test; same models as the Postgres schema.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'index.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield IndexDb(engine=engine, session_factory=async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore("test-bucket")


@pytest.fixture
def fallback_store(tmp_path: Path) -> LocalFallbackStore:
    return LocalFallbackStore(tmp_path / "fallback")


@pytest.fixture
def writer(object_store: InMemoryObjectStore, fallback_store: LocalFallbackStore) -> ArtifactWriter:
    return ArtifactWriter(object_store, fallback_store)


@pytest.fixture
def consolidator(index_db: IndexDb, writer: ArtifactWriter) -> JourneyConsolidator:
    return JourneyConsolidator(index_db.session_factory, writer, settings=get_settings())
