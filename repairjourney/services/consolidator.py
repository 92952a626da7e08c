from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repairjourney.core.config import Settings, get_settings
from repairjourney.core.errors import IndexWriteFailedError, SessionNotFoundError
from repairjourney.domain.journey import (
    PHASE_COMPLETE_JOURNEY,
    PHASE_DIAGNOSTICS,
    PHASE_ISSUE_CONFIRMATION,
    PHASE_REPAIR_GUIDE,
    PHASE_SUBMISSION,
    SESSION_SUBFOLDERS,
    ConsolidatedJourneyDocument,
    JourneyState,
    build_document,
)
from repairjourney.persistence.repos import events as events_repo
from repairjourney.persistence.repos import repair_sessions as sessions_repo
from repairjourney.persistence.repos import session_files as files_repo
from repairjourney.services.cache import TTLCache
from repairjourney.services.persistence import ArtifactWriter, BestEffortResult, StoredArtifact
from repairjourney.services.telemetry import increment_counter
from repairjourney.storage.fallback import session_scope
from repairjourney.storage.keys import FOLDER_MARKER, is_error_address, session_artifact_key, session_folder


logger = logging.getLogger(__name__)

# Any purpose starting with this marks the singular submission artifact.
SUBMISSION_PURPOSE_PREFIX = "submission"


@dataclass(frozen=True)
class ConsolidationOutcome:
    """Primary result of a consolidation plus its best-effort side effects.

    ``address`` is the only thing phase producers need; ``index`` and
    ``folders`` report on writes that are allowed to fail without affecting it.
    """

    session_id: int
    address: str
    backend: str
    index: BestEffortResult
    folders: BestEffortResult
    document: ConsolidatedJourneyDocument | None = None
    deduplicated: bool = False

    @property
    def persisted(self) -> bool:
        return self.backend != "error"


@dataclass(frozen=True)
class SessionSyncReport:
    # Per-session line of a batch consolidation run.
    session_id: int
    success: bool
    address: str | None = None
    error: str | None = None


class JourneyConsolidator:
    """Merges phase payloads into one document per session and persists it.

    Only this class writes journey artifacts and ``repair_sessions.metadata_url``.
    Phase merges for one session are serialized by a row lock where the database
    supports it. Artifact writes are not: concurrent writes land as distinct
    artifacts and the last index update decides which one is current.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        writer: ArtifactWriter,
        *,
        settings: Settings | None = None,
        folder_cache: TTLCache[int, bool] | None = None,
        folder_backoff: TTLCache[str, bool] | None = None,
        ensure_folders: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._writer = writer
        self._settings = settings or get_settings()
        # Session folders already verified in this process; ttl 0 keeps them until evicted.
        self._folder_cache: TTLCache[int, bool] = folder_cache if folder_cache is not None else TTLCache(0)
        # Store-wide pause on folder pre-checks after one fails, so an outage costs one probe.
        self._folder_backoff: TTLCache[str, bool] = (
            folder_backoff if folder_backoff is not None else TTLCache(self._settings.folder_check_backoff_s)
        )
        self._ensure_folders = ensure_folders

    async def record_initial_submission(self, session_id: int, payload: Mapping[str, Any]) -> str:
        # The submission is singular per session: return the existing artifact if one is indexed.
        existing = await self._find_submission_address(session_id)
        if existing is not None:
            logger.info("journey_submission_deduplicated session_id=%s address=%s", session_id, existing)
            increment_counter("journey_submission_dedup_total")
            return existing
        outcome = await self.consolidate_with_outcome(
            session_id,
            {PHASE_SUBMISSION: payload},
            phase=PHASE_SUBMISSION,
            file_purpose=files_repo.PURPOSE_SUBMISSION,
        )
        return outcome.address

    async def record_diagnostics(self, session_id: int, payload: Any) -> str:
        outcome = await self.consolidate_with_outcome(
            session_id, {PHASE_DIAGNOSTICS: payload}, phase=PHASE_DIAGNOSTICS
        )
        return outcome.address

    async def record_issue_confirmation(self, session_id: int, payload: Mapping[str, Any]) -> str:
        outcome = await self.consolidate_with_outcome(
            session_id, {PHASE_ISSUE_CONFIRMATION: payload}, phase=PHASE_ISSUE_CONFIRMATION
        )
        return outcome.address

    async def record_repair_guide(self, session_id: int, payload: Mapping[str, Any]) -> str:
        outcome = await self.consolidate_with_outcome(
            session_id, {PHASE_REPAIR_GUIDE: payload}, phase=PHASE_REPAIR_GUIDE
        )
        return outcome.address

    async def consolidate(
        self, session_id: int, partial_overrides: Mapping[str, Any] | None = None
    ) -> str:
        outcome = await self.consolidate_with_outcome(session_id, partial_overrides)
        return outcome.address

    async def consolidate_with_outcome(
        self,
        session_id: int,
        partial_overrides: Mapping[str, Any] | None = None,
        *,
        phase: str | None = None,
        file_purpose: str = files_repo.PURPOSE_CONSOLIDATED,
    ) -> ConsolidationOutcome:
        """Build, persist and index the consolidated document for one session.

        Raises ``SessionNotFoundError`` when the session row is missing. The merged
        phase state is committed before the artifact write, so a relational failure
        there propagates and nothing is stored. Storage and index failures after that
        never raise; they show up in the returned address scheme and in
        ``ConsolidationOutcome.index``.
        """
        async with self._session_factory() as db:
            repair_session = await sessions_repo.get_repair_session(
                db, session_id, for_update=bool(partial_overrides)
            )
            if repair_session is None:
                raise SessionNotFoundError(session_id)
            state = JourneyState.from_session(repair_session).apply(partial_overrides)
            if partial_overrides:
                # Later documents are built from these columns; this write is not best-effort.
                await sessions_repo.update_phase_state(db, session_id, state.column_values())
                await db.commit()
            interactions = await events_repo.list_interactions(db, session_id)
            analytics = await events_repo.list_analytics(db, session_id)

        document = build_document(
            repair_session,
            state,
            interactions=interactions,
            analytics=analytics,
            schema_version=self._settings.journey_schema_version,
            source=self._settings.journey_source,
        )
        folder_phase = phase or _phase_for(partial_overrides)

        folders = await self._prepare_session_folders(session_id)
        artifact = await self._writer.store(
            key_builder=lambda stamp: session_artifact_key(session_id, folder_phase, stamp),
            scope=session_scope(session_id),
            phase=folder_phase,
            data=document.to_bytes(),
            error_label=f"failed-to-store-{session_id}",
        )

        if artifact.persisted:
            index = await self._index_artifact(
                session_id,
                user_id=repair_session.user_id,
                artifact=artifact,
                file_purpose=file_purpose,
                step_name=folder_phase,
            )
        else:
            index = BestEffortResult.skipped("artifact not persisted")

        logger.info(
            "journey_consolidated session_id=%s phase=%s backend=%s indexed=%s",
            session_id,
            folder_phase,
            artifact.backend,
            index.ok,
        )
        return ConsolidationOutcome(
            session_id=session_id,
            address=artifact.address,
            backend=artifact.backend,
            index=index,
            folders=folders,
            document=document,
        )

    async def consolidate_all(self, session_ids: Iterable[int] | None = None) -> list[SessionSyncReport]:
        """Re-consolidate every session (or the given ones) without new phase data."""
        if session_ids is None:
            async with self._session_factory() as db:
                session_ids = [row.id for row in await sessions_repo.list_sessions(db)]
        reports: list[SessionSyncReport] = []
        for session_id in session_ids:
            try:
                address = await self.consolidate(session_id)
            except SessionNotFoundError as exc:
                reports.append(SessionSyncReport(session_id=session_id, success=False, error=str(exc)))
                continue
            if is_error_address(address):
                reports.append(
                    SessionSyncReport(session_id=session_id, success=False, address=address, error="not persisted")
                )
            else:
                reports.append(SessionSyncReport(session_id=session_id, success=True, address=address))
        return reports

    async def _find_submission_address(self, session_id: int) -> str | None:
        async with self._session_factory() as db:
            try:
                existing = await files_repo.find_session_file_by_purpose(
                    db, session_id, SUBMISSION_PURPOSE_PREFIX, prefix=True
                )
            except SQLAlchemyError as exc:
                # Without the index we cannot prove a duplicate; writing again is the safe side.
                logger.warning("journey_submission_lookup_failed session_id=%s", session_id, exc_info=exc)
                return None
        return existing.file_url if existing is not None else None

    async def _prepare_session_folders(self, session_id: int) -> BestEffortResult:
        if not self._ensure_folders or self._folder_cache.get(session_id):
            return BestEffortResult.succeeded()
        store = self._writer.object_store
        if self._folder_backoff.get(store.bucket):
            return BestEffortResult.skipped("folder check backing off after store failure")
        base = session_folder(session_id)
        try:
            if not await store.exists(f"{base}/"):
                for subfolder in SESSION_SUBFOLDERS:
                    await store.put(f"{base}/{subfolder}/{FOLDER_MARKER}", b"", "application/x-empty")
        except Exception as exc:  # noqa: BLE001 - folder markers are cosmetic
            logger.warning("journey_folder_check_failed session_id=%s", session_id, exc_info=exc)
            self._folder_backoff.set(store.bucket, True)
            return BestEffortResult.failed(exc)
        self._folder_cache.set(session_id, True)
        return BestEffortResult.succeeded()

    async def _index_artifact(
        self,
        session_id: int,
        *,
        user_id: int | None,
        artifact: StoredArtifact,
        file_purpose: str,
        step_name: str,
    ) -> BestEffortResult:
        # Two single-row writes, each committed on its own; either may fail independently.
        errors: list[str] = []
        async with self._session_factory() as db:
            try:
                await files_repo.create_session_file(
                    db,
                    repair_session_id=session_id,
                    user_id=user_id,
                    file_name=artifact.file_name,
                    file_url=artifact.address,
                    file_purpose=file_purpose,
                    step_name=step_name,
                )
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                errors.append(f"file row: {exc}")
                logger.warning("journey_file_index_failed session_id=%s", session_id, exc_info=exc)

            try:
                updated = await sessions_repo.update_metadata_url(db, session_id, artifact.address)
                await db.commit()
                if updated == 0:
                    errors.append("session row missing during metadata_url update")
            except SQLAlchemyError as exc:
                await db.rollback()
                errors.append(f"metadata_url: {exc}")
                logger.warning("journey_metadata_url_update_failed session_id=%s", session_id, exc_info=exc)

        if errors:
            increment_counter("index_write_failures_total")
            return BestEffortResult.failed(IndexWriteFailedError("; ".join(errors)))
        return BestEffortResult.succeeded()


def _phase_for(overrides: Mapping[str, Any] | None) -> str:
    # A single-phase override lands in that phase's folder; anything else is a full snapshot.
    if overrides and len(overrides) == 1:
        return next(iter(overrides))
    return PHASE_COMPLETE_JOURNEY
