from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any
from uuid import uuid4

from statementvault.core.config import get_settings
from statementvault.persistence.db import SessionLocal
from statementvault.services.maintenance import prune_expired_tokens
from statementvault.services.resilience import get_resilience_redis
from statementvault.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)

TOKEN_SWEEP_LOCK_KEY = "statementvault:sweeper:lock"

# Owner check and delete run atomically inside Redis.
_RELEASE_LUA = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""

_local_lock = asyncio.Lock()
_local_lock_owner: str | None = None


@dataclass(slots=True)
class SweepLock:
    token: str
    redis: Any | None
    local: bool


async def acquire_sweep_lock() -> SweepLock | None:
    # Only one sweep may run at a time, across processes when Redis is configured.
    settings = get_settings()
    token = uuid4().hex
    redis = await get_resilience_redis()
    ttl_s = max(5, int(settings.token_sweeper_lock_ttl_s))
    if redis is not None:
        acquired = await redis.set(TOKEN_SWEEP_LOCK_KEY, token, nx=True, ex=ttl_s)
        if not acquired:
            return None
        return SweepLock(token=token, redis=redis, local=False)

    global _local_lock_owner
    if _local_lock.locked():
        return None
    await _local_lock.acquire()
    _local_lock_owner = token
    return SweepLock(token=token, redis=None, local=True)


async def release_sweep_lock(lock: SweepLock) -> None:
    # Release only if this sweeper still owns the token so a newer holder is not clobbered.
    global _local_lock_owner
    if lock.local:
        if _local_lock.locked() and _local_lock_owner == lock.token:
            _local_lock_owner = None
            _local_lock.release()
        return
    if lock.redis is None:
        return
    await lock.redis.eval(_RELEASE_LUA, 1, TOKEN_SWEEP_LOCK_KEY, lock.token)


async def run_token_sweep_cycle() -> dict[str, Any]:
    # One sweep; overlapping triggers are skipped rather than queued.
    lock = await acquire_sweep_lock()
    if lock is None:
        logger.info("token_sweep_skipped reason=lock_held")
        return {"status": "skipped_lock", "deleted": 0}
    try:
        async with SessionLocal() as session:
            deleted = await prune_expired_tokens(session)
            await session.commit()
    finally:
        await release_sweep_lock(lock)
    increment_counter("token_sweeps_total")
    increment_counter("tokens_swept_total", deleted)
    set_gauge("token_sweep_last_deleted", float(deleted))
    logger.info("token_sweep_completed deleted=%s", deleted)
    return {"status": "ok", "deleted": deleted}


class TokenSweeper:
    """Periodic expiry sweeper with an explicit start/stop lifecycle."""

    def __init__(self, interval_s: float | None = None) -> None:
        self._interval_s = float(interval_s if interval_s is not None else get_settings().token_sweeper_interval_s)
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> dict[str, Any]:
        return await run_token_sweep_cycle()

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception:  # noqa: BLE001 - keep loop alive while surfacing errors in logs.
                logger.exception("token_sweep_failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=max(self._interval_s, 0.01))
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="token-sweeper")
        logger.info("token_sweeper_started interval_s=%s", self._interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        try:
            await self._task
        finally:
            self._task = None
            logger.info("token_sweeper_stopped")


async def run_token_sweeper_loop() -> None:
    # Dedicated process entry point; runs until cancelled.
    sweeper = TokenSweeper()
    sweeper.start()
    try:
        await asyncio.Event().wait()
    finally:
        await sweeper.stop()
