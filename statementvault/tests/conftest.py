from __future__ import annotations

import os
from pathlib import Path
import tempfile

# Point the engine at a throwaway database before any statementvault import builds it.
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="statementvault-tests-"))
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_DIR / 'statementvault.db'}"
)
os.environ["STORAGE_PROVIDER"] = "memory"
os.environ["TOKEN_SWEEPER_ENABLED"] = "false"
os.environ["STORAGE_RETRY_BACKOFF_MS"] = "1"
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402

from statementvault.core.config import get_settings  # noqa: E402
from statementvault.domain.models import Base  # noqa: E402
from statementvault.persistence.db import engine  # noqa: E402
from statementvault.providers.storage.factory import get_object_store  # noqa: E402
from statementvault.services.telemetry import reset_telemetry  # noqa: E402


@pytest.fixture(autouse=True)
async def database_schema() -> None:
    # Fresh schema per test; dispose so pooled connections never cross event loops.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Settings, the cached object store and counters are process-wide.
    get_settings.cache_clear()
    get_object_store.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    get_object_store.cache_clear()
    reset_telemetry()
