from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from repairjourney.domain.models import SESSION_STATUSES, RepairSession, RepairSessionFile


async def create_repair_session(
    session: AsyncSession,
    *,
    user_id: int | None,
    device_type: str | None = None,
    device_brand: str | None = None,
    device_model: str | None = None,
    issue_description: str | None = None,
    symptoms: list[str] | None = None,
    status: str = "started",
    session_id: int | None = None,
) -> RepairSession:
    # Sessions are created by the submission flow before any phase is recorded.
    if status not in SESSION_STATUSES:
        raise ValueError(f"Invalid repair session status: {status}")
    row = RepairSession(
        user_id=user_id,
        device_type=device_type,
        device_brand=device_brand,
        device_model=device_model,
        issue_description=issue_description,
        symptoms=list(symptoms or []),
        status=status,
    )
    if session_id is not None:
        row.id = session_id
    session.add(row)
    await session.flush()
    return row


async def get_repair_session(
    session: AsyncSession, session_id: int, *, for_update: bool = False
) -> RepairSession | None:
    stmt = select(RepairSession).where(RepairSession.id == session_id)
    if for_update:
        # Row lock on Postgres serializes phase merges for one session; no-op on sqlite.
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_sessions(session: AsyncSession) -> list[RepairSession]:
    result = await session.execute(select(RepairSession).order_by(RepairSession.id))
    return list(result.scalars().all())


async def list_completed_sessions(session: AsyncSession) -> list[RepairSession]:
    result = await session.execute(
        select(RepairSession).where(RepairSession.status == "completed").order_by(RepairSession.id)
    )
    return list(result.scalars().all())


async def update_status(session: AsyncSession, session_id: int, status: str) -> None:
    if status not in SESSION_STATUSES:
        raise ValueError(f"Invalid repair session status: {status}")
    await session.execute(
        update(RepairSession).where(RepairSession.id == session_id).values(status=status)
    )


async def update_phase_state(session: AsyncSession, session_id: int, phase_values: dict[str, Any]) -> int:
    # Merged phase columns; committed before the artifact write they describe.
    result = await session.execute(
        update(RepairSession).where(RepairSession.id == session_id).values(**phase_values)
    )
    return int(result.rowcount or 0)


async def update_metadata_url(session: AsyncSession, session_id: int, metadata_url: str) -> int:
    result = await session.execute(
        update(RepairSession).where(RepairSession.id == session_id).values(metadata_url=metadata_url)
    )
    return int(result.rowcount or 0)


async def delete_repair_session(session: AsyncSession, session_id: int) -> None:
    # Explicit cascade so file rows go away even where FK cascades are disabled.
    await session.execute(delete(RepairSessionFile).where(RepairSessionFile.repair_session_id == session_id))
    await session.execute(delete(RepairSession).where(RepairSession.id == session_id))
