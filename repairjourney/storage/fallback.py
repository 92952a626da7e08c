from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path

from repairjourney.core.errors import FallbackWriteError
from repairjourney.storage.keys import FILE_SCHEME, ArtifactStamp


logger = logging.getLogger(__name__)


def session_scope(session_id: int) -> str:
    return f"session_{session_id}"


@dataclass(frozen=True)
class LocalFallbackStore:
    """Emergency local copy used only when the durable store call fails.

    Files land at ``{base_dir}/{scope}/{phase}/{phase}_{millis}_{nonce}.json``.
    """

    base_dir: Path

    def path_for(self, scope: str, phase: str, stamp: ArtifactStamp) -> Path:
        return self.base_dir / scope / phase / f"{phase}_{stamp.suffix}.json"

    def write_sync(self, scope: str, phase: str, data: bytes, stamp: ArtifactStamp) -> str:
        path = self.path_for(scope, phase, stamp)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise FallbackWriteError(f"fallback write failed: {path}") from exc
        logger.info("fallback_artifact_written path=%s bytes=%s", path, len(data))
        return f"{FILE_SCHEME}{path.resolve()}"

    async def write(self, scope: str, phase: str, data: bytes, stamp: ArtifactStamp) -> str:
        # Filesystem writes run off the event loop like the durable store calls.
        return await asyncio.to_thread(self.write_sync, scope, phase, data, stamp)

    def read(self, address: str) -> bytes:
        # Audit helper; replaying fallback files into the durable store is not automated.
        if not address.startswith(FILE_SCHEME):
            raise ValueError(f"Not a fallback address: {address}")
        return Path(address[len(FILE_SCHEME):]).read_bytes()
