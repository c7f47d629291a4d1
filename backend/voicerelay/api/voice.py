"""
Voice signaling REST API — the polled rendezvous slot for a room's call.

Endpoints:
  GET    /api/rooms/{room_id}/voice             → current slot, or null when Empty
  POST   /api/rooms/{room_id}/voice/start       → create the slot if absent
  DELETE /api/rooms/{room_id}/voice             → clear offer, answer and candidates
  PUT    /api/rooms/{room_id}/voice/offer       → overwrite the offer
  PUT    /api/rooms/{room_id}/voice/answer      → overwrite the answer (needs an offer)
  POST   /api/rooms/{room_id}/voice/candidates  → append one ICE candidate
"""

from fastapi import APIRouter, Depends, Response, status

from voicerelay.api.deps import get_signaling_store, room_id_param
from voicerelay.schemas.voice import IceCandidate, SdpBody, VoiceSessionState
from voicerelay.signaling.store import SignalingStore

router = APIRouter(prefix="/rooms", tags=["voice"])


@router.get("/{room_id}/voice", response_model=VoiceSessionState | None)
async def get_voice_session_state(
    room_id: str = Depends(room_id_param),
    store: SignalingStore = Depends(get_signaling_store),
) -> VoiceSessionState | None:
    """Return the room's signaling slot.  Cheap: every joined client polls it."""
    return await store.get(room_id)


@router.post("/{room_id}/voice/start", status_code=status.HTTP_204_NO_CONTENT)
async def start_voice_session(
    room_id: str = Depends(room_id_param),
    store: SignalingStore = Depends(get_signaling_store),
) -> Response:
    await store.start(room_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{room_id}/voice", status_code=status.HTTP_204_NO_CONTENT)
async def end_voice_session(
    room_id: str = Depends(room_id_param),
    store: SignalingStore = Depends(get_signaling_store),
) -> Response:
    """Clear the slot for everyone in the room, present or not."""
    await store.end(room_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{room_id}/voice/offer", status_code=status.HTTP_204_NO_CONTENT)
async def send_sdp_offer(
    body: SdpBody,
    room_id: str = Depends(room_id_param),
    store: SignalingStore = Depends(get_signaling_store),
) -> Response:
    await store.set_offer(room_id, body.sdp)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{room_id}/voice/answer", status_code=status.HTTP_204_NO_CONTENT)
async def send_sdp_answer(
    body: SdpBody,
    room_id: str = Depends(room_id_param),
    store: SignalingStore = Depends(get_signaling_store),
) -> Response:
    await store.set_answer(room_id, body.sdp)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{room_id}/voice/candidates", status_code=status.HTTP_204_NO_CONTENT)
async def add_ice_candidate(
    candidate: IceCandidate,
    room_id: str = Depends(room_id_param),
    store: SignalingStore = Depends(get_signaling_store),
) -> Response:
    await store.add_candidate(room_id, candidate)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
