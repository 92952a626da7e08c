from __future__ import annotations

from repairjourney.storage.fallback import LocalFallbackStore, session_scope
from repairjourney.storage.keys import (
    ArtifactClock,
    ArtifactStamp,
    address_backend,
    is_error_address,
)
from repairjourney.storage.object_store import (
    GcsObjectStore,
    InMemoryObjectStore,
    ObjectStore,
    build_object_store,
)


__all__ = [
    "ArtifactClock",
    "ArtifactStamp",
    "GcsObjectStore",
    "InMemoryObjectStore",
    "LocalFallbackStore",
    "ObjectStore",
    "address_backend",
    "build_object_store",
    "is_error_address",
    "session_scope",
]
