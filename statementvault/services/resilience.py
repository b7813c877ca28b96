from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
import json
import logging
import time
from typing import Any, Awaitable, Callable

from redis.asyncio import Redis

from statementvault.core.config import get_settings
from statementvault.core.errors import IntegrationUnavailableError
from statementvault.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"

_STATE_GAUGE = {CLOSED: 0.0, HALF_OPEN: 0.5, OPEN: 1.0}

_redis_clients: dict[int, Redis] = {}


async def get_resilience_redis() -> Redis | None:
    # One client per event loop; None keeps breaker and sweeper state in-process.
    url = get_settings().redis_url
    if not url:
        return None
    loop_id = id(asyncio.get_running_loop())
    client = _redis_clients.get(loop_id)
    if client is None:
        client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
        _redis_clients[loop_id] = client
    return client


@dataclass(frozen=True)
class StoragePolicy:
    operation: str
    timeout_s: float
    attempts: int
    backoff_s: float


def storage_policy(operation: str) -> StoragePolicy:
    settings = get_settings()
    return StoragePolicy(
        operation=operation,
        timeout_s=settings.storage_timeout_ms / 1000.0,
        attempts=max(settings.storage_retry_max_attempts, 1),
        backoff_s=settings.storage_retry_backoff_ms / 1000.0,
    )


async def call_with_retries(
    call: Callable[[], Awaitable[Any]],
    *,
    policy: StoragePolicy,
    retryable: Callable[[Exception], bool],
) -> Any:
    """Run one object-store operation under a per-attempt deadline.

    A timed-out attempt surfaces as ``asyncio.TimeoutError`` and is retried like
    any other error ``retryable`` accepts. Backoff doubles per attempt.
    """
    for attempt in range(1, policy.attempts + 1):
        try:
            return await asyncio.wait_for(call(), timeout=policy.timeout_s)
        except Exception as exc:  # noqa: BLE001 - re-raised unless retryable
            if attempt == policy.attempts or not retryable(exc):
                raise
            increment_counter(f"storage_retries_total.{policy.operation}")
            logger.info(
                "storage_retry op=%s attempt=%s error=%s",
                policy.operation,
                attempt,
                exc.__class__.__name__,
            )
            await asyncio.sleep(policy.backoff_s * (2 ** (attempt - 1)))
    raise AssertionError("unreachable")


@dataclass
class BreakerSnapshot:
    state: str = CLOSED
    failures: int = 0
    opened_at: float | None = None
    trials: int = 0

    def encode(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def decode(cls, raw: str | bytes | None) -> BreakerSnapshot:
        if not raw:
            return cls()
        return cls(**json.loads(raw))


class StorageCircuitBreaker:
    """Fails object-store calls fast after repeated failures of one operation.

    With Redis the snapshot is one JSON value per operation, shared by every
    API and worker process, so timestamps come from the wall clock.
    """

    def __init__(
        self,
        operation: str,
        *,
        redis: Redis | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        settings = get_settings()
        self.operation = operation
        self._redis = redis
        self._clock = clock or time.time
        self._threshold = max(settings.cb_failure_threshold, 1)
        self._open_s = settings.cb_open_seconds
        self._trials = max(settings.cb_half_open_trials, 1)
        self._local = BreakerSnapshot()
        self._key = f"{settings.cb_redis_prefix}:{operation}"

    async def _read(self) -> BreakerSnapshot:
        if self._redis is None:
            return self._local
        return BreakerSnapshot.decode(await self._redis.get(self._key))

    async def _write(self, snapshot: BreakerSnapshot) -> None:
        if self._redis is None:
            self._local = snapshot
            return
        await self._redis.set(self._key, snapshot.encode(), ex=max(self._open_s * 4, 60))

    def _moved(self, before: str, after: str) -> None:
        if before == after:
            return
        logger.warning("storage_breaker_transition op=%s from=%s to=%s", self.operation, before, after)
        increment_counter(f"storage_breaker_transitions_total.{self.operation}.{after}")
        set_gauge(f"storage_breaker_state.{self.operation}", _STATE_GAUGE[after])

    async def state(self) -> str:
        return (await self._read()).state

    async def admit(self) -> None:
        snapshot = await self._read()
        if snapshot.state == OPEN:
            if snapshot.opened_at is not None and self._clock() - snapshot.opened_at < self._open_s:
                raise IntegrationUnavailableError(f"object store {self.operation} is temporarily unavailable")
            self._moved(OPEN, HALF_OPEN)
            snapshot = BreakerSnapshot(state=HALF_OPEN)
        if snapshot.state == HALF_OPEN:
            if snapshot.trials >= self._trials:
                raise IntegrationUnavailableError(f"object store {self.operation} is temporarily unavailable")
            snapshot.trials += 1
            await self._write(snapshot)

    async def succeeded(self) -> None:
        snapshot = await self._read()
        self._moved(snapshot.state, CLOSED)
        if snapshot.state != CLOSED or snapshot.failures:
            await self._write(BreakerSnapshot())

    async def failed(self) -> None:
        snapshot = await self._read()
        failures = snapshot.failures + 1
        if snapshot.state == HALF_OPEN or failures >= self._threshold:
            self._moved(snapshot.state, OPEN)
            await self._write(BreakerSnapshot(state=OPEN, opened_at=self._clock()))
            return
        snapshot.failures = failures
        await self._write(snapshot)
