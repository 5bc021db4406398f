"""Health check router."""

from datetime import datetime, timezone

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "btc-dashboard",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
