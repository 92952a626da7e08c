from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from repairjourney.core.config import get_settings
from repairjourney.core.errors import SessionNotFoundError
from repairjourney.persistence.repos import repair_sessions as sessions_repo
from repairjourney.persistence.repos import session_files as files_repo
from repairjourney.services.cache import TTLCache
from repairjourney.services.consolidator import JourneyConsolidator
from repairjourney.services.events import record_analytics, record_interaction
from repairjourney.services.persistence import ArtifactWriter
from repairjourney.storage.fallback import LocalFallbackStore
from repairjourney.storage.keys import parse_durable_address
from repairjourney.tests.utils.journeys import create_test_session, load_session, read_artifact
from repairjourney.tests.utils.stores import FailingObjectStore


@pytest.mark.asyncio
async def test_session_42_journey_scenario(consolidator, index_db, object_store) -> None:
    await create_test_session(index_db.session_factory, session_id=42)

    first = await consolidator.record_initial_submission(42, {"deviceType": "phone"})
    assert first.startswith("durable-store://")
    row = await load_session(index_db.session_factory, 42)
    assert row.metadata_url == first

    second = await consolidator.record_diagnostics(42, {"analysis": "battery"})
    assert second != first
    document = read_artifact(second, object_store=object_store)
    assert document["initialSubmission"]["deviceType"] == "phone"
    assert document["diagnostics"] == [{"analysis": "battery"}]
    row = await load_session(index_db.session_factory, 42)
    assert row.metadata_url == second


@pytest.mark.asyncio
async def test_diagnostics_append_in_call_order(consolidator, index_db, object_store) -> None:
    session_id = await create_test_session(index_db.session_factory, device_type="laptop")
    payloads = [{"pass": index, "analysis": f"check-{index}"} for index in range(4)]
    address = ""
    for payload in payloads:
        address = await consolidator.record_diagnostics(session_id, payload)

    document = read_artifact(address, object_store=object_store)
    assert document["diagnostics"] == payloads
    # Default submission projection comes from the session row.
    assert document["initialSubmission"]["deviceType"] == "laptop"


@pytest.mark.asyncio
async def test_issue_confirmation_is_last_write_wins(consolidator, index_db, object_store) -> None:
    session_id = await create_test_session(index_db.session_factory)
    await consolidator.record_issue_confirmation(session_id, {"issue": "cracked screen", "severity": "high"})
    address = await consolidator.record_issue_confirmation(session_id, {"issue": "loose connector"})

    document = read_artifact(address, object_store=object_store)
    assert document["issueConfirmation"] == {"issue": "loose connector"}


@pytest.mark.asyncio
async def test_repair_guide_replaced_but_earlier_phases_kept(consolidator, index_db, object_store) -> None:
    session_id = await create_test_session(index_db.session_factory)
    await consolidator.record_diagnostics(session_id, {"analysis": "fan"})
    await consolidator.record_issue_confirmation(session_id, {"issue": "fan bearing"})
    await consolidator.record_repair_guide(session_id, {"steps": ["open case"]})
    address = await consolidator.record_repair_guide(session_id, {"steps": ["open case", "swap fan"]})

    document = read_artifact(address, object_store=object_store)
    assert document["diagnostics"] == [{"analysis": "fan"}]
    assert document["issueConfirmation"] == {"issue": "fan bearing"}
    assert document["repairGuide"] == {"steps": ["open case", "swap fan"]}
    assert document["metadata"]["aiTrainingReady"] is True


@pytest.mark.asyncio
async def test_initial_submission_is_deduplicated(consolidator, index_db, object_store) -> None:
    session_id = await create_test_session(index_db.session_factory)
    first = await consolidator.record_initial_submission(session_id, {"deviceType": "tablet"})
    second = await consolidator.record_initial_submission(session_id, {"deviceType": "tablet", "retry": True})

    assert second == first
    async with index_db.session_factory() as db:
        rows = await files_repo.list_session_files(db, session_id)
    submission_rows = [row for row in rows if row.file_purpose.startswith("submission")]
    assert len(submission_rows) == 1
    assert submission_rows[0].file_url == first


@pytest.mark.asyncio
async def test_store_outage_falls_back_to_local_file(index_db, tmp_path: Path) -> None:
    fallback = LocalFallbackStore(tmp_path / "fallback")
    consolidator = JourneyConsolidator(
        index_db.session_factory,
        ArtifactWriter(FailingObjectStore(), fallback),
        settings=get_settings(),
    )
    session_id = await create_test_session(index_db.session_factory)

    outcome = await consolidator.consolidate_with_outcome(session_id, {"diagnostics": {"analysis": "hinge"}})

    assert outcome.address.startswith("file://")
    assert outcome.backend == "fallback"
    assert fallback.read(outcome.address) == outcome.document.to_bytes()
    assert outcome.folders.ok is False
    row = await load_session(index_db.session_factory, session_id)
    assert row.metadata_url == outcome.address


@pytest.mark.asyncio
async def test_total_failure_returns_error_sentinel(index_db, tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied", encoding="utf-8")
    consolidator = JourneyConsolidator(
        index_db.session_factory,
        ArtifactWriter(FailingObjectStore(), LocalFallbackStore(blocker / "fallback")),
        settings=get_settings(),
    )
    session_id = await create_test_session(index_db.session_factory)

    address = await consolidator.record_repair_guide(session_id, {"steps": []})

    assert address.startswith("error://")
    row = await load_session(index_db.session_factory, session_id)
    # Nothing was stored, so the index must not point at the sentinel.
    assert row.metadata_url is None
    async with index_db.session_factory() as db:
        assert await files_repo.list_session_files(db, session_id) == []


@pytest.mark.asyncio
async def test_missing_session_raises(consolidator) -> None:
    with pytest.raises(SessionNotFoundError):
        await consolidator.record_diagnostics(999, {"analysis": "none"})


@pytest.mark.asyncio
async def test_unknown_phase_override_rejected(consolidator, index_db) -> None:
    session_id = await create_test_session(index_db.session_factory)
    with pytest.raises(ValueError):
        await consolidator.consolidate(session_id, {"shipping": {}})


@pytest.mark.asyncio
async def test_index_failure_does_not_fail_consolidation(consolidator, index_db, object_store) -> None:
    session_id = await create_test_session(index_db.session_factory)
    async with index_db.engine.begin() as conn:
        await conn.execute(text("DROP TABLE repair_session_files"))

    outcome = await consolidator.consolidate_with_outcome(session_id, {"diagnostics": {"analysis": "ram"}})

    assert outcome.address.startswith("durable-store://")
    assert outcome.index.ok is False
    assert "file row" in (outcome.index.error or "")
    _, key = parse_durable_address(outcome.address)
    assert key in object_store.objects
    # The session row update is an independent write and still lands.
    row = await load_session(index_db.session_factory, session_id)
    assert row.metadata_url == outcome.address


@pytest.mark.asyncio
async def test_document_includes_events_and_key_layout(consolidator, index_db, object_store) -> None:
    session_id = await create_test_session(index_db.session_factory)
    async with index_db.session_factory() as db:
        await record_interaction(db, repair_request_id=session_id, interaction_type="question_answered", content={"q": 1})
        await record_analytics(db, repair_request_id=session_id, event_type="guide_viewed", event_data={"ms": 40})

    outcome = await consolidator.consolidate_with_outcome(session_id)
    _, key = parse_durable_address(outcome.address)
    assert key.startswith(f"repair_sessions/{session_id}/complete_journey/repair_session_{session_id}_")
    document = json.loads(object_store.objects[key])
    assert list(document) == [
        "sessionId",
        "timestamp",
        "initialSubmission",
        "diagnostics",
        "issueConfirmation",
        "repairGuide",
        "interactions",
        "analytics",
        "metadata",
    ]
    assert document["interactions"][0]["interactionType"] == "question_answered"
    assert document["analytics"][0]["eventType"] == "guide_viewed"
    assert document["metadata"]["version"] == get_settings().journey_schema_version
    assert object_store.objects[key].decode("utf-8").startswith("{\n  ")


@pytest.mark.asyncio
async def test_folder_markers_written_once_per_session(consolidator, index_db, object_store) -> None:
    session_id = await create_test_session(index_db.session_factory)
    await consolidator.record_diagnostics(session_id, {"analysis": "a"})
    await consolidator.record_diagnostics(session_id, {"analysis": "b"})

    markers = [key for key in object_store.objects if key.endswith("/.folder")]
    assert f"repair_sessions/{session_id}/diagnostics/.folder" in markers
    assert len(markers) == len(set(markers)) == 6


@pytest.mark.asyncio
async def test_concurrent_writes_land_as_distinct_artifacts(consolidator, index_db, object_store) -> None:
    session_id = await create_test_session(index_db.session_factory)
    addresses = await asyncio.gather(
        *(consolidator.record_issue_confirmation(session_id, {"issue": f"v{index}"}) for index in range(5))
    )
    assert len(set(addresses)) == 5
    row = await load_session(index_db.session_factory, session_id)
    assert row.metadata_url in addresses


@pytest.mark.asyncio
async def test_consolidate_all_reports_per_session(consolidator, index_db) -> None:
    first = await create_test_session(index_db.session_factory)
    second = await create_test_session(index_db.session_factory)

    reports = await consolidator.consolidate_all()
    assert [report.session_id for report in reports] == [first, second]
    assert all(report.success for report in reports)

    missing = await consolidator.consolidate_all([first, 404])
    assert missing[0].success is True
    assert missing[1].success is False


def _locked_database_error() -> OperationalError:
    return OperationalError("UPDATE repair_sessions", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_diagnostic_kept_when_metadata_url_update_fails(consolidator, index_db, object_store, monkeypatch) -> None:
    session_id = await create_test_session(index_db.session_factory)
    await consolidator.record_diagnostics(session_id, {"analysis": "a"})

    async def failing_update(*args, **kwargs):
        raise _locked_database_error()

    real_update = sessions_repo.update_metadata_url
    monkeypatch.setattr(sessions_repo, "update_metadata_url", failing_update)
    outcome = await consolidator.consolidate_with_outcome(session_id, {"diagnostics": {"analysis": "b"}})
    monkeypatch.setattr(sessions_repo, "update_metadata_url", real_update)

    assert outcome.address.startswith("durable-store://")
    assert outcome.index.ok is False
    assert "metadata_url" in (outcome.index.error or "")

    third = await consolidator.record_diagnostics(session_id, {"analysis": "c"})
    document = read_artifact(third, object_store=object_store)
    assert document["diagnostics"] == [{"analysis": "a"}, {"analysis": "b"}, {"analysis": "c"}]


@pytest.mark.asyncio
async def test_failed_phase_state_write_raises_before_storing(consolidator, index_db, object_store, monkeypatch) -> None:
    session_id = await create_test_session(index_db.session_factory)

    async def failing_update(*args, **kwargs):
        raise _locked_database_error()

    monkeypatch.setattr(sessions_repo, "update_phase_state", failing_update)
    with pytest.raises(OperationalError):
        await consolidator.record_diagnostics(session_id, {"analysis": "b"})

    assert object_store.objects == {}
    row = await load_session(index_db.session_factory, session_id)
    assert row.metadata_url is None


@pytest.mark.asyncio
async def test_folder_check_backs_off_during_store_outage(index_db, tmp_path: Path) -> None:
    now = {"t": 0.0}
    store = FailingObjectStore()
    consolidator = JourneyConsolidator(
        index_db.session_factory,
        ArtifactWriter(store, LocalFallbackStore(tmp_path / "fallback")),
        settings=get_settings(),
        folder_backoff=TTLCache(30, time_source=lambda: now["t"]),
    )
    first = await create_test_session(index_db.session_factory)
    second = await create_test_session(index_db.session_factory)

    outcome_a = await consolidator.consolidate_with_outcome(first, {"diagnostics": {"analysis": "a"}})
    outcome_b = await consolidator.consolidate_with_outcome(second, {"diagnostics": {"analysis": "b"}})

    assert store.exists_attempts == 1
    assert outcome_a.folders.ok is False
    assert outcome_b.folders.error == "folder check backing off after store failure"
    assert outcome_b.address.startswith("file://")

    now["t"] = 31.0
    await consolidator.consolidate_with_outcome(second, {"diagnostics": {"analysis": "c"}})
    assert store.exists_attempts == 2
