from __future__ import annotations

import json

import pytest

from repairjourney.persistence.repos import session_files as files_repo
from repairjourney.services.events import record_interaction, store_interaction_data
from repairjourney.storage.keys import parse_durable_address
from repairjourney.tests.utils.journeys import create_test_session


@pytest.mark.asyncio
async def test_interaction_artifact_written_and_indexed(index_db, writer, object_store) -> None:
    session_id = await create_test_session(index_db.session_factory)
    async with index_db.session_factory() as db:
        interaction = await record_interaction(
            db,
            repair_request_id=session_id,
            interaction_type="photo_upload",
            user_id=None,
            content={"photo": "front.jpg"},
        )

    address = await store_interaction_data(index_db.session_factory, writer, interaction)

    _, key = parse_durable_address(address)
    assert key.startswith(f"repair_sessions/{session_id}/interactions/interaction_{session_id}_{interaction.id}_photo_upload_")
    assert json.loads(object_store.objects[key])["content"] == {"photo": "front.jpg"}
    async with index_db.session_factory() as db:
        rows = await files_repo.list_session_files(db, session_id, files_repo.PURPOSE_INTERACTION)
    assert [row.file_url for row in rows] == [address]
    assert rows[0].step_name == "photo_upload"


@pytest.mark.asyncio
async def test_interaction_without_session_is_not_synced(index_db, writer, object_store) -> None:
    async with index_db.session_factory() as db:
        interaction = await record_interaction(db, repair_request_id=None, interaction_type="page_view")

    assert await store_interaction_data(index_db.session_factory, writer, interaction) is None
    assert object_store.objects == {}
