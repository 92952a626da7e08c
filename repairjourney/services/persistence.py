from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable

from repairjourney.core.errors import FallbackWriteError, TotalPersistenceFailureError
from repairjourney.services.telemetry import increment_counter
from repairjourney.storage.fallback import LocalFallbackStore
from repairjourney.storage.keys import ArtifactClock, ArtifactStamp, error_address, filename_from_key
from repairjourney.storage.object_store import ObjectStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BestEffortResult:
    # Outcome of a side effect that must never fail the primary operation.
    ok: bool
    error: str | None = None

    @classmethod
    def succeeded(cls) -> "BestEffortResult":
        return cls(ok=True)

    @classmethod
    def failed(cls, exc: BaseException | str) -> "BestEffortResult":
        return cls(ok=False, error=str(exc))

    @classmethod
    def skipped(cls, reason: str) -> "BestEffortResult":
        return cls(ok=False, error=reason)


@dataclass(frozen=True)
class StoredArtifact:
    address: str
    backend: str
    key: str
    stamp: ArtifactStamp

    @property
    def file_name(self) -> str:
        return filename_from_key(self.key)

    @property
    def persisted(self) -> bool:
        return self.backend != "error"


class ArtifactWriter:
    """Durable store first, local fallback second, ``error://`` sentinel last.

    Never raises for storage problems: the returned address scheme tells the
    caller where (and whether) the bytes landed.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        fallback: LocalFallbackStore,
        *,
        clock: ArtifactClock | None = None,
    ) -> None:
        self._object_store = object_store
        self._fallback = fallback
        self._clock = clock or ArtifactClock()

    @property
    def object_store(self) -> ObjectStore:
        return self._object_store

    @property
    def clock(self) -> ArtifactClock:
        return self._clock

    async def store(
        self,
        *,
        key_builder: Callable[[ArtifactStamp], str],
        scope: str,
        phase: str,
        data: bytes,
        error_label: str,
        content_type: str = "application/json",
    ) -> StoredArtifact:
        stamp = self._clock.stamp()
        key = key_builder(stamp)
        try:
            address = await self._object_store.put(key, data, content_type)
            return StoredArtifact(address=address, backend="durable", key=key, stamp=stamp)
        except Exception as exc:  # noqa: BLE001 - store outages are recovered via fallback
            increment_counter("object_store_failures_total")
            logger.warning("durable_store_put_failed key=%s", key, exc_info=exc)

        try:
            address = await self._fallback.write(scope, phase, data, stamp)
        except FallbackWriteError as exc:
            increment_counter("total_persistence_failures_total")
            failure = TotalPersistenceFailureError(f"durable and fallback writes failed: {exc}")
            logger.error("artifact_not_persisted scope=%s phase=%s", scope, phase, exc_info=failure)
            return StoredArtifact(
                address=error_address(error_label, stamp.millis),
                backend="error",
                key=key,
                stamp=stamp,
            )
        increment_counter("fallback_writes_total")
        return StoredArtifact(address=address, backend="fallback", key=key, stamp=stamp)
