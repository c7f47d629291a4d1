from fastapi import APIRouter, Depends

from voicerelay.api.deps import get_signaling_store
from voicerelay.redis.client import redis_healthy
from voicerelay.signaling.store import SignalingStore

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(store: SignalingStore = Depends(get_signaling_store)) -> dict:
    if store.backend == "redis":
        if await redis_healthy():
            return {"status": "healthy", "store": store.backend, "redis": "connected"}
        return {"status": "unhealthy", "store": store.backend, "redis": "disconnected"}
    return {"status": "healthy", "store": store.backend, "redis": "disabled"}
