"""
Redis-backed voice signaling store — one shared slot per room.

Key scheme:
  {SERVER_DOMAIN}:voice:{room_id}:session     →  hash {started: "1", offer?, answer?}
  {SERVER_DOMAIN}:voice:{room_id}:candidates  →  list of JSON {"candidate", "lineIndex"}
  TTL = VOICE_SESSION_TTL seconds, refreshed on every write (0 = no expiry).

Writes that depend on the current slot (offer/answer/candidate) WATCH the
session hash and retry on conflict; end() drops both keys in a single DEL,
so a concurrent writer either lands before the delete or fails the check.

Signaling must never pretend to succeed: Redis errors are
logged and re-raised as StoreUnavailable.
"""

import json
import logging
from collections.abc import Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from voicerelay.core.errors import NoActiveSession, OfferRequired, StoreUnavailable
from voicerelay.redis.keys import voice_candidates_key, voice_session_key
from voicerelay.schemas.voice import IceCandidate, VoiceSessionState
from voicerelay.signaling.store import SignalingStore, validate_room_id, validate_sdp

logger = logging.getLogger(__name__)

MAX_WATCH_RETRIES = 16


class RedisSignalingStore(SignalingStore):
    backend = "redis"

    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 0) -> None:
        self._redis = client
        self._ttl = ttl_seconds

    def _queue_ttl(self, pipe, room_id: str) -> None:
        if self._ttl > 0:
            pipe.expire(voice_session_key(room_id), self._ttl)
            pipe.expire(voice_candidates_key(room_id), self._ttl)

    async def _guarded_write(
        self,
        room_id: str,
        check: Callable[[dict], None],
        queue: Callable[[object], None],
    ) -> None:
        """WATCH the session hash, validate it with *check*, then run *queue* in MULTI."""
        key = voice_session_key(room_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            for _ in range(MAX_WATCH_RETRIES):
                try:
                    await pipe.watch(key)
                    slot = await pipe.hgetall(key)
                    check(slot)
                    pipe.multi()
                    queue(pipe)
                    self._queue_ttl(pipe, room_id)
                    await pipe.execute()
                    return
                except WatchError:
                    logger.debug("voice slot %s changed during write, retrying", room_id)
                    continue
        raise StoreUnavailable(room_id, "too much contention on voice session")

    async def start(self, room_id: str) -> None:
        validate_room_id(room_id)
        try:
            created = await self._redis.hsetnx(voice_session_key(room_id), "started", "1")
            if self._ttl > 0:
                pipe = self._redis.pipeline()
                self._queue_ttl(pipe, room_id)
                await pipe.execute()
        except RedisError as exc:
            logger.warning("voice.start failed: %s", exc)
            raise StoreUnavailable(room_id, str(exc)) from exc
        if created:
            logger.info("voice session started for room %s", room_id)

    async def set_offer(self, room_id: str, sdp: str) -> None:
        validate_room_id(room_id)
        validate_sdp(sdp)

        def check(slot: dict) -> None:
            if not slot:
                raise NoActiveSession(room_id)
            if slot.get("offer") not in (None, sdp):
                logger.warning("voice offer for room %s overwritten", room_id)

        try:
            await self._guarded_write(
                room_id, check, lambda pipe: pipe.hset(voice_session_key(room_id), "offer", sdp)
            )
        except RedisError as exc:
            logger.warning("voice.set_offer failed: %s", exc)
            raise StoreUnavailable(room_id, str(exc)) from exc

    async def set_answer(self, room_id: str, sdp: str) -> None:
        validate_room_id(room_id)
        validate_sdp(sdp)

        def check(slot: dict) -> None:
            if not slot:
                raise NoActiveSession(room_id)
            if not slot.get("offer"):
                raise OfferRequired(room_id)

        try:
            await self._guarded_write(
                room_id, check, lambda pipe: pipe.hset(voice_session_key(room_id), "answer", sdp)
            )
        except RedisError as exc:
            logger.warning("voice.set_answer failed: %s", exc)
            raise StoreUnavailable(room_id, str(exc)) from exc

    async def add_candidate(self, room_id: str, candidate: IceCandidate) -> None:
        validate_room_id(room_id)
        payload = json.dumps(candidate.model_dump(by_alias=True))

        def check(slot: dict) -> None:
            if not slot:
                raise NoActiveSession(room_id)

        try:
            await self._guarded_write(
                room_id, check, lambda pipe: pipe.rpush(voice_candidates_key(room_id), payload)
            )
        except RedisError as exc:
            logger.warning("voice.add_candidate failed: %s", exc)
            raise StoreUnavailable(room_id, str(exc)) from exc

    async def get(self, room_id: str) -> VoiceSessionState | None:
        validate_room_id(room_id)
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.hgetall(voice_session_key(room_id))
            pipe.lrange(voice_candidates_key(room_id), 0, -1)
            slot, raw_candidates = await pipe.execute()
        except RedisError as exc:
            logger.warning("voice.get failed: %s", exc)
            raise StoreUnavailable(room_id, str(exc)) from exc
        if not slot:
            return None
        return VoiceSessionState(
            offer=slot.get("offer"),
            answer=slot.get("answer"),
            ice_candidates=[IceCandidate.model_validate(json.loads(raw)) for raw in raw_candidates],
        )

    async def end(self, room_id: str) -> None:
        validate_room_id(room_id)
        try:
            removed = await self._redis.delete(voice_session_key(room_id), voice_candidates_key(room_id))
        except RedisError as exc:
            logger.warning("voice.end failed: %s", exc)
            raise StoreUnavailable(room_id, str(exc)) from exc
        if removed:
            logger.info("voice session ended for room %s", room_id)
