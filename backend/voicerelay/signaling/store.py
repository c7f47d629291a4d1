"""
Signaling store contract and the in-process backend.

One slot per room holds an optional offer, an optional answer and an
append-only list of ICE candidates.  The slot is the only rendezvous between
two call participants, so the store enforces the shape of the data and
nothing else:

  start        creates the slot if absent, leaves an existing one untouched
  set_offer    overwrite, last writer wins (requires a started slot)
  set_answer   overwrite, last writer wins (requires an offer)
  add_candidate  append, no dedup (requires a started slot)
  get          snapshot or None (Empty)
  end          drops the whole slot; idempotent

MemorySignalingStore serializes every mutation of a room behind that room's
own asyncio.Lock, so each room behaves like a single-owner actor.  Like the
rest of the in-memory state in this app it assumes a single-process
deployment; RedisSignalingStore (voicerelay.redis.voice) is the shared one.
"""

import asyncio
import logging
import re
import time
import weakref
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from voicerelay.core.errors import NoActiveSession, OfferRequired
from voicerelay.schemas.voice import MAX_SDP_LENGTH, IceCandidate, VoiceSessionState

logger = logging.getLogger(__name__)

ROOM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:\-]{1,128}$")


def validate_room_id(room_id: str) -> str:
    if not isinstance(room_id, str) or not ROOM_ID_PATTERN.match(room_id):
        raise ValueError("room_id must be 1-128 characters of letters, digits, '_', '.', ':' or '-'")
    return room_id


def validate_sdp(sdp: str) -> str:
    if not isinstance(sdp, str) or not sdp.strip():
        raise ValueError("Session description must be a non-empty string")
    if len(sdp) > MAX_SDP_LENGTH:
        raise ValueError(f"Session description exceeds {MAX_SDP_LENGTH} characters")
    return sdp


class SignalingStore(ABC):
    """Per-room voice signaling slot."""

    backend: str = "abstract"

    @abstractmethod
    async def start(self, room_id: str) -> None: ...

    @abstractmethod
    async def set_offer(self, room_id: str, sdp: str) -> None: ...

    @abstractmethod
    async def set_answer(self, room_id: str, sdp: str) -> None: ...

    @abstractmethod
    async def add_candidate(self, room_id: str, candidate: IceCandidate) -> None: ...

    @abstractmethod
    async def get(self, room_id: str) -> VoiceSessionState | None: ...

    @abstractmethod
    async def end(self, room_id: str) -> None: ...


@dataclass
class _Slot:
    offer: str | None = None
    answer: str | None = None
    candidates: list[IceCandidate] = field(default_factory=list)
    expires_at: float | None = None


class MemorySignalingStore(SignalingStore):
    backend = "memory"

    def __init__(self, ttl_seconds: int = 0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._slots: dict[str, _Slot] = {}
        # A room keeps its lock only while some call holds or awaits it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        return lock

    def _live_slot(self, room_id: str) -> _Slot | None:
        slot = self._slots.get(room_id)
        if slot is not None and slot.expires_at is not None and slot.expires_at <= self._clock():
            logger.info("voice session for room %s expired", room_id)
            self._slots.pop(room_id, None)
            return None
        return slot

    def _touch(self, slot: _Slot) -> None:
        if self._ttl > 0:
            slot.expires_at = self._clock() + self._ttl

    def _require_slot(self, room_id: str) -> _Slot:
        slot = self._live_slot(room_id)
        if slot is None:
            raise NoActiveSession(room_id)
        return slot

    async def start(self, room_id: str) -> None:
        validate_room_id(room_id)
        async with self._lock(room_id):
            slot = self._live_slot(room_id)
            if slot is None:
                slot = self._slots[room_id] = _Slot()
                logger.info("voice session started for room %s", room_id)
            self._touch(slot)

    async def set_offer(self, room_id: str, sdp: str) -> None:
        validate_room_id(room_id)
        validate_sdp(sdp)
        async with self._lock(room_id):
            slot = self._require_slot(room_id)
            if slot.offer is not None and slot.offer != sdp:
                logger.warning("voice offer for room %s overwritten", room_id)
            slot.offer = sdp
            self._touch(slot)

    async def set_answer(self, room_id: str, sdp: str) -> None:
        validate_room_id(room_id)
        validate_sdp(sdp)
        async with self._lock(room_id):
            slot = self._require_slot(room_id)
            if slot.offer is None:
                raise OfferRequired(room_id)
            slot.answer = sdp
            self._touch(slot)

    async def add_candidate(self, room_id: str, candidate: IceCandidate) -> None:
        validate_room_id(room_id)
        async with self._lock(room_id):
            slot = self._require_slot(room_id)
            slot.candidates.append(candidate)
            self._touch(slot)

    async def get(self, room_id: str) -> VoiceSessionState | None:
        validate_room_id(room_id)
        async with self._lock(room_id):
            slot = self._live_slot(room_id)
            if slot is None:
                return None
            return VoiceSessionState(
                offer=slot.offer,
                answer=slot.answer,
                ice_candidates=list(slot.candidates),
            )

    async def end(self, room_id: str) -> None:
        validate_room_id(room_id)
        async with self._lock(room_id):
            if self._slots.pop(room_id, None) is not None:
                logger.info("voice session ended for room %s", room_id)
