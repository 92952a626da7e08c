from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repairjourney.core.config import Settings, get_settings
from repairjourney.domain.journey import JourneyState, serialize_artifact
from repairjourney.domain.models import RepairSession, RepairSessionFile
from repairjourney.persistence.repos import events as events_repo
from repairjourney.persistence.repos import repair_sessions as sessions_repo
from repairjourney.persistence.repos import session_files as files_repo
from repairjourney.services.persistence import ArtifactWriter
from repairjourney.storage.keys import training_dataset_key


logger = logging.getLogger(__name__)

TRAINING_SCOPE = "training"
TRAINING_PHASE = "dataset"


@dataclass(frozen=True)
class CorpusResult:
    address: str
    backend: str
    session_ids: list[int] = field(default_factory=list)

    @property
    def session_count(self) -> int:
        return len(self.session_ids)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def training_record(
    repair_session: RepairSession,
    state: JourneyState,
    files: list[RepairSessionFile],
    interaction_count: int,
) -> dict[str, Any]:
    # Reduced projection of one completed journey; phase values are copied unchanged.
    return {
        "sessionId": repair_session.id,
        "deviceInfo": {
            "type": repair_session.device_type,
            "brand": repair_session.device_brand,
            "model": repair_session.device_model,
        },
        "problem": {
            "description": repair_session.issue_description,
            "symptoms": list(repair_session.symptoms or []),
        },
        "diagnostic": list(state.diagnostics),
        "confirmedIssue": state.issue_confirmation,
        "solution": state.repair_guide,
        "files": [
            {
                "purpose": row.file_purpose,
                "step": row.step_name,
                "url": row.file_url,
                "type": row.content_type,
            }
            for row in files
        ],
        "interactionCount": interaction_count,
        "timestamps": {
            "created": _isoformat(repair_session.created_at),
            "updated": _isoformat(repair_session.updated_at),
        },
    }


class TrainingCorpusBuilder:
    """Offline job: one dataset artifact from every completed, fully-phased journey."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        writer: ArtifactWriter,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._writer = writer
        self._settings = settings or get_settings()

    async def collect_records(self) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        async with self._session_factory() as db:
            for repair_session in await sessions_repo.list_completed_sessions(db):
                state = JourneyState.from_session(repair_session)
                # Filter, not validation: incomplete journeys are skipped without noise.
                if not state.has_all_training_phases():
                    continue
                files = await files_repo.list_session_files(db, repair_session.id)
                interactions = await events_repo.list_interactions(db, repair_session.id)
                records.append(training_record(repair_session, state, files, len(interactions)))
        return records

    async def build_corpus_with_result(self) -> CorpusResult:
        records = await self.collect_records()
        payload = {
            "metadata": {
                "generatedAt": datetime.now(timezone.utc).isoformat(),
                "version": self._settings.journey_schema_version,
                "sessionCount": len(records),
                "source": self._settings.journey_source,
            },
            "data": records,
        }
        artifact = await self._writer.store(
            key_builder=training_dataset_key,
            scope=TRAINING_SCOPE,
            phase=TRAINING_PHASE,
            data=serialize_artifact(payload),
            error_label="training-dataset-failed",
        )
        logger.info(
            "training_corpus_built sessions=%s backend=%s address=%s",
            len(records),
            artifact.backend,
            artifact.address,
        )
        return CorpusResult(
            address=artifact.address,
            backend=artifact.backend,
            session_ids=[record["sessionId"] for record in records],
        )

    async def build_corpus(self) -> str:
        result = await self.build_corpus_with_result()
        return result.address
