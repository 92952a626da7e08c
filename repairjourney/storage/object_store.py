from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any, Protocol

from google.api_core import exceptions as google_exceptions
from google.auth import default as google_auth_default
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage
from google.oauth2 import service_account

from repairjourney.core.config import Settings, get_settings
from repairjourney.core.errors import StoreUnavailableError
from repairjourney.services.resilience import RetryPolicy, retry_async
from repairjourney.services.telemetry import record_external_call
from repairjourney.storage.keys import durable_address


logger = logging.getLogger(__name__)

_GCS_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


class ObjectStore(Protocol):
    # Durable blob store addressed by hierarchical keys; may be unreachable.
    bucket: str

    async def put(self, key: str, data: bytes, content_type: str = "application/json") -> str:
        ...

    async def get(self, key: str) -> bytes:
        ...

    async def exists(self, prefix: str) -> bool:
        ...


class InMemoryObjectStore:
    """Process-local object store for development and tests."""

    def __init__(self, bucket: str = "memory") -> None:
        self.bucket = bucket
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}

    async def put(self, key: str, data: bytes, content_type: str = "application/json") -> str:
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type
        return durable_address(self.bucket, key)

    async def get(self, key: str) -> bytes:
        try:
            return self.objects[key]
        except KeyError as exc:
            raise StoreUnavailableError(f"object not found: {key}") from exc

    async def exists(self, prefix: str) -> bool:
        return any(key.startswith(prefix) for key in self.objects)


def _retryable(exc: Exception) -> bool:
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError, TimeoutError)):
        return True
    return isinstance(
        exc,
        (
            google_exceptions.ServerError,
            google_exceptions.TooManyRequests,
            google_exceptions.ServiceUnavailable,
        ),
    )


class GcsObjectStore:
    """Google Cloud Storage backed object store.

    The storage client is synchronous, so every call runs in a worker thread and
    goes through the shared retry policy. Any failure (network, credentials,
    quota, missing bucket) surfaces as ``StoreUnavailableError``.
    """

    def __init__(
        self,
        bucket: str,
        *,
        project: str | None = None,
        credentials_path: str | None = None,
        client: Any | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required for the GCS object store")
        self.bucket = bucket
        self._project = project
        self._credentials_path = credentials_path
        self._client = client
        self._policy = policy

    def _build_credentials(self) -> Any:
        key_path = self._credentials_path or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
        if key_path and os.path.exists(key_path):
            return service_account.Credentials.from_service_account_file(key_path, scopes=_GCS_SCOPES)
        creds, _ = google_auth_default(scopes=_GCS_SCOPES)
        return creds

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            self._client = storage.Client(project=self._project, credentials=self._build_credentials())
        except GoogleAuthError as exc:
            raise StoreUnavailableError("GCS credentials unavailable") from exc
        return self._client

    async def _call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        start = time.monotonic()
        try:
            client = self._get_client()

            async def _run() -> Any:
                return await asyncio.to_thread(func, client, *args, **kwargs)

            result = await retry_async(_run, policy=self._policy, retryable=_retryable)
        except StoreUnavailableError:
            record_external_call(
                integration="object_store.gcs",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise
        except Exception as exc:  # noqa: BLE001 - every client failure means the store is unavailable
            record_external_call(
                integration="object_store.gcs",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            logger.warning("gcs_call_failed operation=%s bucket=%s", operation, self.bucket, exc_info=exc)
            raise StoreUnavailableError(f"GCS {operation} failed") from exc
        record_external_call(
            integration="object_store.gcs",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        return result

    async def put(self, key: str, data: bytes, content_type: str = "application/json") -> str:
        def _upload(client: Any) -> None:
            blob = client.bucket(self.bucket).blob(key)
            blob.upload_from_string(data, content_type=content_type)

        await self._call("put", _upload)
        return durable_address(self.bucket, key)

    async def get(self, key: str) -> bytes:
        def _download(client: Any) -> bytes:
            return client.bucket(self.bucket).blob(key).download_as_bytes()

        return await self._call("get", _download)

    async def exists(self, prefix: str) -> bool:
        def _probe(client: Any) -> bool:
            blobs = client.list_blobs(self.bucket, prefix=prefix, max_results=1)
            return any(True for _ in blobs)

        return await self._call("exists", _probe)


def build_object_store(settings: Settings | None = None) -> ObjectStore:
    settings = settings or get_settings()
    backend = settings.object_store_backend
    if backend == "gcs":
        return GcsObjectStore(
            settings.gcs_bucket_name,
            project=settings.gcs_project_id,
            credentials_path=settings.google_application_credentials,
        )
    if backend == "memory":
        return InMemoryObjectStore(settings.gcs_bucket_name)
    raise ValueError(f"Unsupported object store backend: {backend}")
