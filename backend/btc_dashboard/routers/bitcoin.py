"""Bitcoin data API router.

Read-only views over the running services plus a manual cleanup trigger:
- Scheduler, cache and provider statistics
- Current snapshot and cached candles per timeframe
- Adapter health and memory/maintenance info
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from ..models.timeframes import TIMEFRAMES, parse_timeframe
from ..services.dashboard import DashboardServices

router = APIRouter()


def get_services(request: Request) -> DashboardServices:
    """Resolve the application's service container."""
    return request.app.state.services


class CandleResponse(BaseModel):
    """One OHLC candle."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class CandlesResponse(BaseModel):
    """Cached candles for one timeframe."""
    timeframe: str
    count: int
    candles: List[CandleResponse]


class CleanupResponse(BaseModel):
    """Result of a manual cleanup."""
    success: bool
    message: str
    memory: Dict[str, Any]


@router.get("/stats")
async def get_stats(services: DashboardServices = Depends(get_services)):
    """Scheduler counters, cache statistics and provider health."""
    stats = services.scheduler.get_stats()
    stats["websocket"] = services.ws_manager.get_stats()
    return stats


@router.get("/cache")
async def get_cache(services: DashboardServices = Depends(get_services)):
    """Current dashboard snapshot."""
    return services.cache.to_dict()


@router.get("/adapters")
async def get_adapters(services: DashboardServices = Depends(get_services)):
    """Provider health per adapter."""
    return services.manager.get_health_status()


@router.get("/memory")
async def get_memory(services: DashboardServices = Depends(get_services)):
    """Memory and maintenance information of cache, manager and scheduler."""
    return services.scheduler.get_memory_info()


@router.post("/cleanup", response_model=CleanupResponse)
async def force_cleanup(services: DashboardServices = Depends(get_services)):
    """Run cache and provider cleanup immediately."""
    services.scheduler.force_cleanup()
    return CleanupResponse(
        success=True,
        message="Memory cleanup completed",
        memory=services.scheduler.get_memory_info(),
    )


@router.get("/candles/{timeframe}", response_model=CandlesResponse)
async def get_candles(timeframe: str, services: DashboardServices = Depends(get_services)):
    """Cached candles for a timeframe (5M, 1H, 4H, 1D, 1W)."""
    tf = parse_timeframe(timeframe)
    if tf is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid timeframe '{timeframe}'. Valid: {[t.value for t in TIMEFRAMES]}",
        )

    candles = services.cache.get_candles(tf)
    return CandlesResponse(
        timeframe=tf.value,
        count=len(candles),
        candles=[CandleResponse(**c) for c in candles],
    )
