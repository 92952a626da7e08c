from __future__ import annotations

from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repairjourney.core.config import Settings, get_settings
from repairjourney.services.consolidator import JourneyConsolidator
from repairjourney.services.corpus import TrainingCorpusBuilder
from repairjourney.services.persistence import ArtifactWriter
from repairjourney.storage.fallback import LocalFallbackStore
from repairjourney.storage.object_store import ObjectStore, build_object_store


def _default_session_factory() -> async_sessionmaker[AsyncSession]:
    # Imported lazily so building an engine only happens for real deployments.
    from repairjourney.persistence.db import SessionLocal

    return SessionLocal


def build_artifact_writer(
    settings: Settings | None = None, *, object_store: ObjectStore | None = None
) -> ArtifactWriter:
    settings = settings or get_settings()
    return ArtifactWriter(
        object_store or build_object_store(settings),
        LocalFallbackStore(Path(settings.fallback_storage_dir)),
    )


def build_consolidator(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    writer: ArtifactWriter | None = None,
) -> JourneyConsolidator:
    settings = settings or get_settings()
    return JourneyConsolidator(
        session_factory or _default_session_factory(),
        writer or build_artifact_writer(settings),
        settings=settings,
    )


def build_corpus_builder(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    writer: ArtifactWriter | None = None,
) -> TrainingCorpusBuilder:
    settings = settings or get_settings()
    return TrainingCorpusBuilder(
        session_factory or _default_session_factory(),
        writer or build_artifact_writer(settings),
        settings=settings,
    )
