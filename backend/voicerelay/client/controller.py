"""Call controller — one per participant per call.

Owns the captured microphone, the local RTCPeerConnection and the role
decision, and drives join → reconcile → leave against the room's polled
signaling slot.

Roles are never negotiated explicitly:

  offerer     joined an un-offered slot and published the offer
  answerer    first to see an un-answered offer it did not author
  undetermined  everyone else (waiting, or a third participant watching an
              already answered slot)

reconcile() is idempotent per snapshot: feeding it the same snapshot twice
leaves the controller where one pass did.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from aiortc import RTCConfiguration, RTCIceCandidate, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from voicerelay.client.media import LocalAudio, acquire_microphone
from voicerelay.client.poller import PollSynchronizer
from voicerelay.client.rpc import SignalingClient
from voicerelay.config import settings
from voicerelay.core.errors import CallStateError, NegotiationError, SignalingTransportError
from voicerelay.schemas.voice import IceCandidate, VoiceSessionState

logger = logging.getLogger(__name__)


class Role(str, Enum):
    UNDETERMINED = "undetermined"
    OFFERER = "offerer"
    ANSWERER = "answerer"


class CallPhase(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    JOINED = "joined"  # joined, not yet answered
    NEGOTIATED = "negotiated"


def build_peer_connection(stun_url: str) -> RTCPeerConnection:
    return RTCPeerConnection(configuration=RTCConfiguration(iceServers=[RTCIceServer(urls=[stun_url])]))


def candidate_to_wire(candidate: RTCIceCandidate | IceCandidate) -> IceCandidate:
    if isinstance(candidate, IceCandidate):
        return candidate
    return IceCandidate(
        candidate="candidate:" + candidate_to_sdp(candidate),
        line_index=candidate.sdpMLineIndex or 0,
    )


def candidate_from_wire(candidate: IceCandidate) -> RTCIceCandidate:
    sdp = candidate.candidate
    if sdp.startswith("candidate:"):
        sdp = sdp[len("candidate:"):]
    ice = candidate_from_sdp(sdp)
    ice.sdpMLineIndex = candidate.line_index
    return ice


class CallController:
    def __init__(
        self,
        room_id: str,
        rpc: SignalingClient,
        *,
        stun_url: str | None = None,
        poll_interval_ms: int | None = None,
        media_factory: Callable[[], Awaitable[LocalAudio]] = acquire_microphone,
        peer_connection_factory: Callable[[str], RTCPeerConnection] = build_peer_connection,
        on_poll_error: Callable[[Exception], None] | None = None,
        on_poll_recover: Callable[[], None] | None = None,
    ) -> None:
        self.room_id = room_id
        self._rpc = rpc
        self._stun_url = stun_url or settings.STUN_SERVER_URL
        self._poll_interval_ms = poll_interval_ms or settings.VOICE_POLL_INTERVAL_MS
        self._media_factory = media_factory
        self._pc_factory = peer_connection_factory
        self._on_poll_error = on_poll_error
        self._on_poll_recover = on_poll_recover

        self.phase = CallPhase.IDLE
        self.role = Role.UNDETERMINED
        self._media: LocalAudio | None = None
        self._pc: RTCPeerConnection | None = None
        self._poller: PollSynchronizer | None = None
        self._publish_tasks: set[asyncio.Task] = set()
        self._reset_negotiation_state()

    def _reset_negotiation_state(self) -> None:
        self.role = Role.UNDETERMINED
        self._applied: set[tuple[str, int]] = set()
        self._published: set[tuple[str, int]] = set()
        self._rejected: set[str] = set()
        self._local_offer: str | None = None
        self._local_answer: str | None = None
        self._remote_offer: str | None = None
        self._remote_answer: str | None = None
        self._remote_applied = False
        self._offer_pending = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_joined(self) -> bool:
        return self.phase in (CallPhase.JOINED, CallPhase.NEGOTIATED)

    @property
    def is_muted(self) -> bool:
        return self._media is not None and self._media.muted

    @property
    def applied_candidates(self) -> frozenset[tuple[str, int]]:
        return frozenset(self._applied)

    @property
    def peer_connection(self) -> RTCPeerConnection | None:
        return self._pc

    @property
    def poller(self) -> PollSynchronizer | None:
        return self._poller

    # ------------------------------------------------------------------
    # Join
    # ------------------------------------------------------------------

    async def join(self) -> None:
        """
        Acquire the microphone, build the peer connection, open the room's
        slot and publish an offer if nobody has yet, then start polling.
        Any failure releases whatever was acquired and re-raises.
        """
        if self.phase is not CallPhase.IDLE:
            raise CallStateError(f"Cannot join voice in room {self.room_id!r} while {self.phase.value}")
        self.phase = CallPhase.JOINING
        try:
            self._media = await self._media_factory()
            self._pc = self._new_peer_connection()
            await self._rpc.start_voice_session(self.room_id)
            existing = await self._rpc.get_voice_session_state(self.room_id)
            if existing is not None and existing.offer is not None:
                # Someone else's offer is already up; reconcile() decides our role
                logger.info(
                    "room %s already has an %s voice session; not publishing an offer",
                    self.room_id,
                    existing.phase,
                )
            else:
                await self._publish_offer()
        except BaseException:
            await self._release_local()
            self._reset_negotiation_state()
            self.phase = CallPhase.IDLE
            raise

        self.phase = CallPhase.JOINED
        self._poller = PollSynchronizer(
            self.room_id,
            self._rpc.get_voice_session_state,
            self.reconcile,
            self._poll_interval_ms,
            on_error=self._on_poll_error,
            on_recover=self._on_poll_recover,
        )
        self._poller.start()
        logger.info("joined voice in room %s as %s", self.room_id, self.role.value)

    def _new_peer_connection(self) -> RTCPeerConnection:
        pc = self._pc_factory(self._stun_url)
        for track in self._media.tracks:
            pc.addTrack(track)
        pc.on("icecandidate", self._on_local_candidate)
        return pc

    async def _publish_offer(self) -> None:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        sdp = self._pc.localDescription.sdp
        await self._rpc.send_sdp_offer(self.room_id, sdp)
        self._local_offer = sdp
        self._offer_pending = False
        self.role = Role.OFFERER

    async def _open_with_offer(self) -> None:
        await self._rpc.start_voice_session(self.room_id)
        await self._publish_offer()

    async def _reoffer(self) -> None:
        """
        The answer we applied was overwritten, so our connection is paired with
        a participant that stepped back.  Clear the slot and offer again on a
        fresh connection; the participants still waiting answer the new offer.
        """
        await self._restart_negotiation()
        self._offer_pending = True
        await self._rpc.end_voice_session(self.room_id)
        await self._open_with_offer()

    # ------------------------------------------------------------------
    # Local candidates (fire-and-forget)
    # ------------------------------------------------------------------

    def _on_local_candidate(self, candidate: RTCIceCandidate | IceCandidate | None) -> None:
        if candidate is None:
            return
        wire = candidate_to_wire(candidate)
        self._published.add(wire.identity)
        task = asyncio.create_task(self._publish_candidate(wire))
        self._publish_tasks.add(task)
        task.add_done_callback(self._publish_tasks.discard)

    async def _publish_candidate(self, candidate: IceCandidate) -> None:
        try:
            await self._rpc.add_ice_candidate(self.room_id, candidate)
        except SignalingTransportError as exc:
            logger.warning("could not publish ICE candidate for room %s: %s", self.room_id, exc)

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    async def reconcile(self, state: VoiceSessionState | None) -> None:
        """Apply whatever in *state* is new to this participant; no-op otherwise."""
        if not self.is_joined or self._pc is None:
            return

        if self._offer_pending:
            if state is None or state.offer is None:
                await self._open_with_offer()
                return
            # Someone else offered before our re-offer landed
            self._offer_pending = False

        if state is None:
            if self.role is not Role.UNDETERMINED:
                logger.info("voice session in room %s was ended; waiting for a new offer", self.room_id)
                await self._restart_negotiation()
            return

        if self.role is Role.OFFERER and state.offer != self._local_offer:
            logger.warning("voice offer in room %s was overwritten by another participant", self.room_id)
            await self._restart_negotiation()
        elif self.role is Role.OFFERER and self._remote_answer is not None and state.answer != self._remote_answer:
            logger.warning("voice answer in room %s was replaced after it was applied; offering again", self.room_id)
            await self._reoffer()
            return
        elif self.role is Role.ANSWERER and state.offer != self._remote_offer:
            logger.info("voice offer in room %s changed since it was answered", self.room_id)
            await self._restart_negotiation()
        elif self.role is Role.ANSWERER and state.answer is not None and state.answer != self._local_answer:
            logger.warning("another participant answered first in room %s", self.room_id)
            await self._restart_negotiation()

        if self.role is Role.UNDETERMINED and state.offer is not None and state.answer is None:
            await self._answer(state.offer)
        elif self.role is Role.ANSWERER and state.answer is None and self._local_answer is not None:
            # An earlier publication of our answer never landed
            await self._rpc.send_sdp_answer(self.room_id, self._local_answer)
        elif self.role is Role.OFFERER and state.answer is not None and not self._remote_applied:
            await self._accept_answer(state.answer)

        if self._remote_applied:
            await self._apply_candidates(state.ice_candidates)

    async def _set_remote(self, sdp: str, kind: str) -> None:
        try:
            await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type=kind))
            if kind == "offer":
                await self._pc.setLocalDescription(await self._pc.createAnswer())
        except Exception as exc:
            raise NegotiationError(f"malformed remote {kind}: {exc}") from exc

    async def _answer(self, offer: str) -> None:
        if offer in self._rejected:
            return
        try:
            await self._set_remote(offer, "offer")
        except NegotiationError as exc:
            logger.warning("could not answer voice offer in room %s: %s", self.room_id, exc)
            self._rejected.add(offer)
            await self._replace_peer_connection()
            return
        self._local_answer = self._pc.localDescription.sdp
        self._remote_offer = offer
        self._remote_applied = True
        self.role = Role.ANSWERER
        self.phase = CallPhase.NEGOTIATED
        await self._rpc.send_sdp_answer(self.room_id, self._local_answer)

    async def _accept_answer(self, answer: str) -> None:
        if answer in self._rejected:
            return
        try:
            await self._set_remote(answer, "answer")
        except NegotiationError as exc:
            logger.warning("could not apply voice answer in room %s: %s", self.room_id, exc)
            self._rejected.add(answer)
            return
        self._remote_answer = answer
        self._remote_applied = True
        self.phase = CallPhase.NEGOTIATED
        logger.info("voice answer applied in room %s", self.room_id)

    async def _apply_candidates(self, candidates: list[IceCandidate]) -> None:
        for candidate in candidates:
            key = candidate.identity
            if key in self._applied or key in self._published:
                continue
            self._applied.add(key)
            try:
                await self._pc.addIceCandidate(candidate_from_wire(candidate))
            except Exception as exc:
                logger.warning("skipping ICE candidate %r in room %s: %s", candidate.candidate, self.room_id, exc)

    async def _restart_negotiation(self) -> None:
        """Drop a lost offer/answer: fresh peer connection, role back to undetermined."""
        rejected = self._rejected
        self._reset_negotiation_state()
        self._rejected = rejected
        self.phase = CallPhase.JOINED
        await self._replace_peer_connection()

    async def _replace_peer_connection(self) -> None:
        old, self._pc = self._pc, None
        if old is not None:
            try:
                await old.close()
            except Exception as exc:
                logger.warning("closing peer connection for room %s failed: %s", self.room_id, exc)
        self._pc = self._new_peer_connection()

    # ------------------------------------------------------------------
    # Mute
    # ------------------------------------------------------------------

    def set_muted(self, muted: bool) -> None:
        """Local only: the signaling slot is never touched."""
        if self._media is None:
            raise CallStateError("Not in a voice call")
        self._media.set_muted(muted)

    def toggle_mute(self) -> bool:
        self.set_muted(not self.is_muted)
        return self.is_muted

    # ------------------------------------------------------------------
    # Leave
    # ------------------------------------------------------------------

    async def leave(self) -> None:
        """
        Stop polling, release media and connection, and end the room's
        session for everyone.  Local cleanup always completes; a failed
        endVoiceSession is re-raised afterwards.
        """
        if self.phase is CallPhase.IDLE:
            return
        poller, self._poller = self._poller, None
        if poller is not None:
            await poller.stop()
        await self._release_local()

        error: SignalingTransportError | None = None
        try:
            await self._rpc.end_voice_session(self.room_id)
        except SignalingTransportError as exc:
            logger.warning("could not end voice session for room %s: %s", self.room_id, exc)
            error = exc

        self._reset_negotiation_state()
        self.phase = CallPhase.IDLE
        logger.info("left voice in room %s", self.room_id)
        if error is not None:
            raise error

    async def _release_local(self) -> None:
        media, self._media = self._media, None
        if media is not None:
            try:
                media.stop()
            except Exception as exc:
                logger.warning("stopping microphone failed: %s", exc)
        pc, self._pc = self._pc, None
        if pc is not None:
            try:
                await pc.close()
            except Exception as exc:
                logger.warning("closing peer connection for room %s failed: %s", self.room_id, exc)

    async def aclose(self) -> None:
        await self.leave()

    async def __aenter__(self) -> "CallController":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
