from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from ezjobs.config.settings import Settings, SettingsDep
from ezjobs.context import AppContext
from ezjobs.v1.core.context import ContextDep
from ezjobs.v1.core.exceptions import create_success_response

router = APIRouter()


class StoreHealth(BaseModel):
    """Job store health status."""

    backend: str
    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class PoolHealth(BaseModel):
    """Worker pool status."""

    queue: str
    worker_id: str
    running: bool
    concurrency: int
    active_jobs: int


class HealthResponse(BaseModel):
    ok: bool
    version: str
    environment: str
    timestamp: str
    store: StoreHealth
    pools: list[PoolHealth]
    scheduler_running: bool


@router.get("/healthz", response_model=dict)
async def health_check(settings: Settings = SettingsDep, ctx: AppContext = ContextDep):
    """Health check with job store reachability and worker pool states."""
    started = datetime.now(UTC)
    health = await ctx.health()
    response_time_ms = (datetime.now(UTC) - started).total_seconds() * 1000

    store = StoreHealth(**health["store"])
    if store.connected:
        store.response_time_ms = round(response_time_ms, 2)

    response = HealthResponse(
        ok=store.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        store=store,
        pools=[PoolHealth(**pool) for pool in health["pools"]],
        scheduler_running=health["scheduler_running"],
    )
    return create_success_response(data=response.model_dump())
