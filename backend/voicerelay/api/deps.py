import logging

from fastapi import Path

from voicerelay.config import settings
from voicerelay.redis.client import get_redis
from voicerelay.redis.voice import RedisSignalingStore
from voicerelay.signaling.store import MemorySignalingStore, SignalingStore

logger = logging.getLogger(__name__)

_store: SignalingStore | None = None


def configure_store() -> SignalingStore:
    """
    Pick the signaling backend.  Call once at startup, after init_redis().
    Falls back to the in-memory store when Redis is disabled or unreachable.
    """
    global _store
    client = get_redis()
    if settings.VOICE_STORE_BACKEND == "redis" and client is not None:
        _store = RedisSignalingStore(client, ttl_seconds=settings.VOICE_SESSION_TTL)
    else:
        if settings.VOICE_STORE_BACKEND == "redis":
            logger.warning("Redis not available; voice sessions are held in memory (single worker only)")
        _store = MemorySignalingStore(ttl_seconds=settings.VOICE_SESSION_TTL)
    logger.info("voice signaling store: %s", _store.backend)
    return _store


def reset_store() -> None:
    global _store
    _store = None


def get_signaling_store() -> SignalingStore:
    if _store is None:
        return configure_store()
    return _store


def room_id_param(
    room_id: str = Path(..., min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_.:\-]+$"),
) -> str:
    return room_id
