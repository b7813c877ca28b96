from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from statementvault.core.config import get_settings
from statementvault.persistence.db import pool_stats
from statementvault.services.telemetry import (
    counters_snapshot,
    external_latency_by_integration,
    gauges_snapshot,
)


router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str


class OpsMetricsResponse(BaseModel):
    storage_provider: str
    db_pool: dict[str, int | None]
    counters: dict[str, int]
    gauges: dict[str, float]
    storage_latency: dict[str, dict[str, float | None]]


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get("/ops/metrics", response_model=OpsMetricsResponse)
async def ops_metrics() -> OpsMetricsResponse:
    # Process-local view; counters reset on restart.
    return OpsMetricsResponse(
        storage_provider=get_settings().storage_provider,
        db_pool=pool_stats(),
        counters=counters_snapshot(),
        gauges=gauges_snapshot(),
        storage_latency=external_latency_by_integration(900),
    )
