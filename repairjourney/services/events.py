from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repairjourney.domain.journey import PHASE_INTERACTIONS, interaction_record, serialize_artifact
from repairjourney.domain.models import RepairAnalytics, UserInteraction
from repairjourney.persistence.repos import events as events_repo
from repairjourney.persistence.repos import session_files as files_repo
from repairjourney.services.persistence import ArtifactWriter
from repairjourney.storage.fallback import session_scope
from repairjourney.storage.keys import interaction_artifact_key


logger = logging.getLogger(__name__)


async def record_interaction(
    session: AsyncSession,
    *,
    repair_request_id: int | None,
    interaction_type: str,
    user_id: int | None = None,
    content: dict[str, Any] | None = None,
) -> UserInteraction:
    # Entry point for producers outside the engine; commits immediately.
    row = await events_repo.add_interaction(
        session,
        repair_request_id=repair_request_id,
        interaction_type=interaction_type,
        user_id=user_id,
        content=content,
    )
    await session.commit()
    return row


async def record_analytics(
    session: AsyncSession,
    *,
    repair_request_id: int | None,
    event_type: str,
    event_data: dict[str, Any] | None = None,
) -> RepairAnalytics:
    row = await events_repo.add_analytics(
        session,
        repair_request_id=repair_request_id,
        event_type=event_type,
        event_data=event_data,
    )
    await session.commit()
    return row


async def store_interaction_data(
    session_factory: async_sessionmaker[AsyncSession],
    writer: ArtifactWriter,
    interaction: UserInteraction,
) -> str | None:
    """Persist one interaction as its own artifact next to the session's journey files.

    Interactions without a repair session are not synced. Returns the artifact
    address (possibly ``file://`` or ``error://``).
    """
    session_id = interaction.repair_request_id
    if session_id is None:
        return None
    artifact = await writer.store(
        key_builder=lambda stamp: interaction_artifact_key(
            session_id, interaction.id, interaction.interaction_type, stamp
        ),
        scope=session_scope(session_id),
        phase=PHASE_INTERACTIONS,
        data=serialize_artifact(interaction_record(interaction)),
        error_label=f"interaction-failed-{session_id}-{interaction.id}",
    )
    if not artifact.persisted:
        return artifact.address

    async with session_factory() as db:
        try:
            await files_repo.create_session_file(
                db,
                repair_session_id=session_id,
                user_id=interaction.user_id,
                file_name=artifact.file_name,
                file_url=artifact.address,
                file_purpose=files_repo.PURPOSE_INTERACTION,
                step_name=interaction.interaction_type,
            )
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning(
                "interaction_file_index_failed session_id=%s interaction_id=%s",
                session_id,
                interaction.id,
                exc_info=exc,
            )
    return artifact.address
