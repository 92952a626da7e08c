from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repairjourney.core.config import Settings, get_settings
from repairjourney.core.errors import UserNotFoundError
from repairjourney.domain.models import User
from repairjourney.persistence.repos import users as users_repo
from repairjourney.services.cache import TTLCache
from repairjourney.storage.object_store import ObjectStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserRecord:
    id: int
    username: str
    email: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "username": self.username, "email": self.email}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "UserRecord":
        return cls(id=int(payload["id"]), username=str(payload["username"]), email=payload.get("email"))

    @classmethod
    def from_row(cls, row: User) -> "UserRecord":
        return cls(id=row.id, username=row.username, email=row.email)


class UserStore(Protocol):
    async def get_user(self, user_id: int) -> UserRecord:
        ...

    async def save_user(self, record: UserRecord) -> UserRecord:
        ...


class _CachedStore:
    # Shared read-through/evict-on-write behavior for every variant.
    def __init__(self, cache: TTLCache[int, UserRecord] | None) -> None:
        self._cache = cache

    def _cached(self, user_id: int) -> UserRecord | None:
        return self._cache.get(user_id) if self._cache is not None else None

    def _remember(self, record: UserRecord) -> None:
        if self._cache is not None:
            self._cache.set(record.id, record)

    def _evict(self, user_id: int) -> None:
        if self._cache is not None:
            self._cache.evict(user_id)


class RelationalUserStore(_CachedStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: TTLCache[int, UserRecord] | None = None,
    ) -> None:
        super().__init__(cache)
        self._session_factory = session_factory

    async def get_user(self, user_id: int) -> UserRecord:
        cached = self._cached(user_id)
        if cached is not None:
            return cached
        async with self._session_factory() as db:
            row = await users_repo.get_user(db, user_id)
        if row is None:
            raise UserNotFoundError(f"user not found: {user_id}")
        record = UserRecord.from_row(row)
        self._remember(record)
        return record

    async def save_user(self, record: UserRecord) -> UserRecord:
        async with self._session_factory() as db:
            row = await users_repo.get_user(db, record.id)
            if row is None:
                row = await users_repo.create_user(
                    db, username=record.username, email=record.email, user_id=record.id
                )
            else:
                row.username = record.username
                row.email = record.email
            await db.commit()
            saved = UserRecord.from_row(row)
        self._evict(record.id)
        return saved


def user_profile_key(user_id: int) -> str:
    return f"users/{user_id}/profile.json"


class DurableObjectUserStore(_CachedStore):
    def __init__(self, object_store: ObjectStore, *, cache: TTLCache[int, UserRecord] | None = None) -> None:
        super().__init__(cache)
        self._object_store = object_store

    async def get_user(self, user_id: int) -> UserRecord:
        cached = self._cached(user_id)
        if cached is not None:
            return cached
        key = user_profile_key(user_id)
        if not await self._object_store.exists(key):
            raise UserNotFoundError(f"user not found: {user_id}")
        record = UserRecord.from_dict(json.loads(await self._object_store.get(key)))
        self._remember(record)
        return record

    async def save_user(self, record: UserRecord) -> UserRecord:
        payload = json.dumps(record.to_dict(), indent=2).encode("utf-8")
        await self._object_store.put(user_profile_key(record.id), payload, "application/json")
        self._evict(record.id)
        return record


class HybridUserStore(_CachedStore):
    """Relational rows are authoritative; the object store keeps a mirror copy.

    Mirror writes are best-effort. Reads fall back to the mirror only when the
    relational row is missing.
    """

    def __init__(
        self,
        primary: RelationalUserStore,
        mirror: DurableObjectUserStore,
        *,
        cache: TTLCache[int, UserRecord] | None = None,
    ) -> None:
        super().__init__(cache)
        self._primary = primary
        self._mirror = mirror

    async def get_user(self, user_id: int) -> UserRecord:
        cached = self._cached(user_id)
        if cached is not None:
            return cached
        try:
            record = await self._primary.get_user(user_id)
        except UserNotFoundError:
            record = await self._mirror.get_user(user_id)
        self._remember(record)
        return record

    async def save_user(self, record: UserRecord) -> UserRecord:
        saved = await self._primary.save_user(record)
        try:
            await self._mirror.save_user(saved)
        except Exception as exc:  # noqa: BLE001 - mirror copy must not fail the primary write
            logger.warning("user_mirror_write_failed user_id=%s", record.id, exc_info=exc)
        self._evict(record.id)
        return saved


def build_user_store(
    session_factory: async_sessionmaker[AsyncSession],
    object_store: ObjectStore,
    *,
    settings: Settings | None = None,
    cache: TTLCache[int, UserRecord] | None = None,
) -> UserStore:
    settings = settings or get_settings()
    if cache is None:
        cache = TTLCache(settings.user_cache_ttl_s)
    backend = settings.user_store_backend
    if backend == "relational":
        return RelationalUserStore(session_factory, cache=cache)
    if backend == "durable":
        return DurableObjectUserStore(object_store, cache=cache)
    if backend == "hybrid":
        return HybridUserStore(
            RelationalUserStore(session_factory),
            DurableObjectUserStore(object_store),
            cache=cache,
        )
    raise ValueError(f"Unsupported user store backend: {backend}")
