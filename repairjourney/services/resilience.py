from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
from typing import Any, Awaitable, Callable

from repairjourney.core.config import Settings, get_settings
from repairjourney.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def is_transient(exc: Exception) -> bool:
    # Network blips and 5xx/429 responses are worth another attempt; anything else is final.
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    code = getattr(exc, "code", None)
    return isinstance(code, int) and (code >= 500 or code == 429)


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            timeout_ms=settings.ext_call_timeout_ms,
            max_attempts=settings.ext_retry_max_attempts,
            backoff_ms=settings.ext_retry_backoff_ms,
        )

    def delay_s(self, attempt: int) -> float:
        # Exponential backoff with +/-50% jitter so parallel writers do not retry in lockstep.
        return (self.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy.from_settings()


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
    label: str = "object_store",
) -> Any:
    """Run ``func`` with a per-attempt timeout, retrying transient failures.

    The last exception propagates unchanged once attempts run out or the
    failure is not retryable.
    """
    policy = policy or default_retry_policy()
    retryable = retryable or is_transient
    attempts = max(policy.max_attempts, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - re-raised unless retryable
            if attempt >= attempts or not retryable(exc):
                raise
            increment_counter(f"{label}_retries_total")
            logger.info("%s_retry attempt=%s error=%s", label, attempt, type(exc).__name__)
            await asyncio.sleep(policy.delay_s(attempt))
