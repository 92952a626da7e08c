from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from repairjourney.domain.models import RepairAnalytics, UserInteraction


async def list_interactions(session: AsyncSession, repair_request_id: int) -> list[UserInteraction]:
    result = await session.execute(
        select(UserInteraction)
        .where(UserInteraction.repair_request_id == repair_request_id)
        .order_by(UserInteraction.created_at, UserInteraction.id)
    )
    return list(result.scalars().all())


async def list_analytics(session: AsyncSession, repair_request_id: int) -> list[RepairAnalytics]:
    result = await session.execute(
        select(RepairAnalytics)
        .where(RepairAnalytics.repair_request_id == repair_request_id)
        .order_by(RepairAnalytics.created_at, RepairAnalytics.id)
    )
    return list(result.scalars().all())


async def add_interaction(
    session: AsyncSession,
    *,
    repair_request_id: int | None,
    interaction_type: str,
    user_id: int | None = None,
    content: dict[str, Any] | None = None,
) -> UserInteraction:
    # Event logs are append-only; producers never update existing rows.
    row = UserInteraction(
        repair_request_id=repair_request_id,
        interaction_type=interaction_type,
        user_id=user_id,
        content=content or {},
    )
    session.add(row)
    await session.flush()
    return row


async def add_analytics(
    session: AsyncSession,
    *,
    repair_request_id: int | None,
    event_type: str,
    event_data: dict[str, Any] | None = None,
) -> RepairAnalytics:
    row = RepairAnalytics(
        repair_request_id=repair_request_id,
        event_type=event_type,
        event_data=event_data or {},
    )
    session.add(row)
    await session.flush()
    return row
