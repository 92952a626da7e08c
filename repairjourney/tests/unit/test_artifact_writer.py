from __future__ import annotations

from pathlib import Path

import pytest

from repairjourney.services.persistence import ArtifactWriter
from repairjourney.services.telemetry import counters_snapshot
from repairjourney.storage.fallback import LocalFallbackStore
from repairjourney.storage.keys import ArtifactClock
from repairjourney.tests.utils.stores import FailingObjectStore


def _key(stamp) -> str:
    return f"repair_sessions/1/submission/repair_session_1_{stamp.suffix}.json"


@pytest.mark.asyncio
async def test_durable_write_returns_store_address(writer, object_store) -> None:
    artifact = await writer.store(
        key_builder=_key, scope="session_1", phase="submission", data=b"{}", error_label="failed-to-store-1"
    )
    assert artifact.backend == "durable"
    assert artifact.address == f"durable-store://test-bucket/{artifact.key}"
    assert object_store.objects[artifact.key] == b"{}"
    assert object_store.content_types[artifact.key] == "application/json"
    assert artifact.file_name.startswith("repair_session_1_")


@pytest.mark.asyncio
async def test_outage_writes_fallback_copy(tmp_path: Path) -> None:
    store = FailingObjectStore()
    fallback = LocalFallbackStore(tmp_path / "fb")
    writer = ArtifactWriter(store, fallback, clock=ArtifactClock(time_source=lambda: 5.0))

    artifact = await writer.store(
        key_builder=_key, scope="session_1", phase="submission", data=b'{"x": 1}', error_label="failed-to-store-1"
    )

    assert store.put_attempts == 1
    assert artifact.backend == "fallback"
    assert artifact.address.endswith("session_1/submission/submission_5000_" + artifact.stamp.nonce + ".json")
    assert fallback.read(artifact.address) == b'{"x": 1}'
    counters = counters_snapshot()
    assert counters["object_store_failures_total"] == 1
    assert counters["fallback_writes_total"] == 1


@pytest.mark.asyncio
async def test_total_failure_returns_sentinel(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    writer = ArtifactWriter(
        FailingObjectStore(),
        LocalFallbackStore(blocker),
        clock=ArtifactClock(time_source=lambda: 2.0),
    )

    artifact = await writer.store(
        key_builder=_key, scope="session_1", phase="submission", data=b"{}", error_label="failed-to-store-1"
    )

    assert artifact.address == "error://failed-to-store-1-2000"
    assert artifact.persisted is False
    assert counters_snapshot()["total_persistence_failures_total"] == 1
