"""Voice relay exception hierarchy.

Server side raises the SignalingStoreError family (mapped to HTTP responses in
main.py).  Client side raises the media / transport / negotiation family;
VoicePanel turns them into user-facing messages.
"""


class VoiceError(Exception):
    """Base class for every voice relay error."""


# ── Server: signaling store contract ─────────────────────────────────────────


class SignalingStoreError(VoiceError):
    status_code = 409

    def __init__(self, room_id: str, detail: str) -> None:
        super().__init__(detail)
        self.room_id = room_id
        self.detail = detail


class NoActiveSession(SignalingStoreError):
    def __init__(self, room_id: str) -> None:
        super().__init__(room_id, f"No active voice session for room {room_id!r}")


class OfferRequired(SignalingStoreError):
    def __init__(self, room_id: str) -> None:
        super().__init__(room_id, f"Voice session for room {room_id!r} has no offer to answer")


class StoreUnavailable(SignalingStoreError):
    status_code = 503

    def __init__(self, room_id: str, reason: str) -> None:
        super().__init__(room_id, f"Signaling store unavailable: {reason}")


# ── Client: media, transport, negotiation ────────────────────────────────────


class MediaAcquisitionError(VoiceError):
    """The microphone could not be opened."""


class MicrophonePermissionDenied(MediaAcquisitionError):
    pass


class MicrophoneNotFound(MediaAcquisitionError):
    pass


class SignalingTransportError(VoiceError):
    """A call to the signaling API failed or was rejected."""

    def __init__(self, operation: str, detail: str, status_code: int | None = None) -> None:
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.detail = detail
        self.status_code = status_code


class NegotiationError(VoiceError):
    """A fetched offer/answer could not be applied to the peer connection."""


class CallStateError(VoiceError):
    """Operation not valid in the controller's current phase."""
