"""
Pytest fixtures shared across all test modules.
Redis is disabled so the app runs on the in-memory signaling store, and the
client side talks to fakes: no microphone, no real peer connections.
"""

import asyncio
import os

# Set env vars BEFORE any app module is imported
os.environ["REDIS_URL"] = ""
os.environ["VOICE_STORE_BACKEND"] = "memory"
os.environ["VOICE_SESSION_TTL"] = "0"

import pytest
from aiortc import RTCSessionDescription
from aiortc.mediastreams import AudioStreamTrack
from fastapi.testclient import TestClient

# Import app modules AFTER env vars are set
from voicerelay.api import deps  # noqa: E402
from voicerelay.client.media import LocalAudio, MutableAudioTrack  # noqa: E402
from voicerelay.core.errors import SignalingStoreError, SignalingTransportError  # noqa: E402
from voicerelay.main import app  # noqa: E402
from voicerelay.schemas.voice import IceCandidate  # noqa: E402
from voicerelay.signaling.store import MemorySignalingStore  # noqa: E402

# Parseable candidate lines (RFC 5245 grammar, documentation address ranges)
CANDIDATE_HOST = "candidate:1 1 udp 2130706431 192.0.2.10 50000 typ host"
CANDIDATE_SRFLX = "candidate:842163049 1 udp 1677729535 198.51.100.7 46154 typ srflx raddr 192.0.2.10 rport 50000"
CANDIDATE_RELAY = "candidate:3 1 udp 16777215 203.0.113.9 3478 typ relay raddr 198.51.100.7 rport 46154"


@pytest.fixture(autouse=True)
def fresh_store():
    deps.reset_store()
    yield
    deps.reset_store()


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def store():
    return MemorySignalingStore()


# ---------------------------------------------------------------------------
# Client-side fakes
# ---------------------------------------------------------------------------


class FakeSignaling:
    """SignalingClient stand-in backed directly by a signaling store."""

    def __init__(self, store):
        self.store = store
        self.calls: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()

    async def _call(self, operation: str, room_id: str, coro):
        self.calls.append((operation, room_id))
        if operation in self.fail_on:
            coro.close()
            raise SignalingTransportError(operation, "connection refused")
        try:
            return await coro
        except SignalingStoreError as exc:
            raise SignalingTransportError(operation, exc.detail, exc.status_code) from exc

    async def start_voice_session(self, room_id):
        await self._call("startVoiceSession", room_id, self.store.start(room_id))

    async def end_voice_session(self, room_id):
        await self._call("endVoiceSession", room_id, self.store.end(room_id))

    async def send_sdp_offer(self, room_id, offer):
        await self._call("sendSdpOffer", room_id, self.store.set_offer(room_id, offer))

    async def send_sdp_answer(self, room_id, answer):
        await self._call("sendSdpAnswer", room_id, self.store.set_answer(room_id, answer))

    async def add_ice_candidate(self, room_id, candidate):
        await self._call("addIceCandidate", room_id, self.store.add_candidate(room_id, candidate))

    async def get_voice_session_state(self, room_id):
        return await self._call("getVoiceSessionState", room_id, self.store.get(room_id))

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


class FakePeerConnection:
    """Records what the controller does to an RTCPeerConnection."""

    def __init__(self, label: str, stun_url: str):
        self.label = label
        self.stun_url = stun_url
        self.tracks: list = []
        self.handlers: dict = {}
        self.localDescription = None
        self.remoteDescription = None
        self.added_candidates: list = []
        self.remote_calls = 0
        self.closed = False

    def addTrack(self, track):
        self.tracks.append(track)

    def on(self, event, handler):
        self.handlers[event] = handler
        return handler

    async def createOffer(self):
        return RTCSessionDescription(sdp=f"v=0 offer-{self.label}", type="offer")

    async def createAnswer(self):
        if self.remoteDescription is None:
            raise RuntimeError("no remote description")
        return RTCSessionDescription(sdp=f"v=0 answer-{self.label}", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        self.remote_calls += 1
        if "garbage" in description.sdp:
            raise ValueError("SDP does not have 'v=' line")
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        self.added_candidates.append(candidate)

    async def close(self):
        self.closed = True

    def emit_candidate(self, candidate):
        self.handlers["icecandidate"](candidate)


class PeerConnectionFactory:
    def __init__(self, label: str):
        self.label = label
        self.created: list[FakePeerConnection] = []

    def __call__(self, stun_url: str) -> FakePeerConnection:
        pc = FakePeerConnection(f"{self.label}{len(self.created) or ''}", stun_url)
        self.created.append(pc)
        return pc


class MediaFactory:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.acquired: list[LocalAudio] = []

    async def __call__(self) -> LocalAudio:
        if self.error is not None:
            raise self.error
        media = LocalAudio(MutableAudioTrack(AudioStreamTrack()))
        self.acquired.append(media)
        return media


def wire(candidate: str, line_index: int = 0) -> IceCandidate:
    return IceCandidate(candidate=candidate, line_index=line_index)


async def settle(rounds: int = 5) -> None:
    """Let fire-and-forget tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
