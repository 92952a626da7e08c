from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from repairjourney.domain.models import RepairSessionFile


PURPOSE_SUBMISSION = "submission_data"
PURPOSE_CONSOLIDATED = "consolidated_data"
PURPOSE_INTERACTION = "interaction_data"


async def create_session_file(
    session: AsyncSession,
    *,
    repair_session_id: int,
    user_id: int | None,
    file_name: str,
    file_url: str,
    file_purpose: str,
    step_name: str | None,
    content_type: str = "application/json",
) -> RepairSessionFile:
    # Audit rows are insert-only; one per persisted artifact.
    row = RepairSessionFile(
        repair_session_id=repair_session_id,
        user_id=user_id,
        file_name=file_name,
        file_url=file_url,
        file_purpose=file_purpose,
        step_name=step_name,
        content_type=content_type,
    )
    session.add(row)
    await session.flush()
    return row


async def find_session_file_by_purpose(
    session: AsyncSession,
    repair_session_id: int,
    purpose: str,
    *,
    prefix: bool = False,
) -> RepairSessionFile | None:
    # Oldest match wins so repeated lookups return the same artifact.
    stmt = select(RepairSessionFile).where(RepairSessionFile.repair_session_id == repair_session_id)
    if prefix:
        stmt = stmt.where(RepairSessionFile.file_purpose.startswith(purpose, autoescape=True))
    else:
        stmt = stmt.where(RepairSessionFile.file_purpose == purpose)
    result = await session.execute(stmt.order_by(RepairSessionFile.id).limit(1))
    return result.scalar_one_or_none()


async def list_session_files(
    session: AsyncSession, repair_session_id: int, purpose: str | None = None
) -> list[RepairSessionFile]:
    stmt = select(RepairSessionFile).where(RepairSessionFile.repair_session_id == repair_session_id)
    if purpose:
        stmt = stmt.where(RepairSessionFile.file_purpose == purpose)
    result = await session.execute(stmt.order_by(RepairSessionFile.id))
    return list(result.scalars().all())
