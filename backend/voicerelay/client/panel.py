"""
Voice panel — the user-facing side of a room's voice call.

Wraps a CallController and turns its outcomes into what the user sees:
actionable join errors (no microphone / permission denied / connection),
a dismissible, retriable banner while polling fails, and short notices
(joined, left, muted, unmuted) delivered to a notify callback.

Used as an async context manager by the hosting view so that navigating away
from the room always leaves the call.
"""

import logging
from collections.abc import Callable

from voicerelay.client.controller import CallController
from voicerelay.client.rpc import SignalingClient
from voicerelay.core import events
from voicerelay.core.errors import (
    CallStateError,
    MicrophoneNotFound,
    MicrophonePermissionDenied,
    SignalingTransportError,
)

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "Microphone permission denied. Please allow microphone access to use voice chat."
PERMISSION_GUIDANCE = (
    "Open your system privacy settings",
    "Allow microphone access for this application",
    "Try joining voice again",
)
NO_MICROPHONE_MESSAGE = "No microphone found. Please connect a microphone to use voice chat."
JOIN_FAILED_MESSAGE = "Failed to join voice chat. Please try again."
LEAVE_FAILED_MESSAGE = "Failed to leave voice chat. Please try again."
SYNC_FAILED_MESSAGE = "Failed to connect to voice session. Please check your connection and try again."


def _log_notice(event: str, message: str) -> None:
    logger.info("%s: %s", event, message)


class VoicePanel:
    def __init__(
        self,
        room_id: str,
        rpc: SignalingClient,
        *,
        poll_interval_ms: int | None = None,
        notify: Callable[[str, str], None] = _log_notice,
        controller_factory: Callable[..., CallController] = CallController,
        **controller_kwargs,
    ) -> None:
        self.room_id = room_id
        self._notify = notify
        self.controller = controller_factory(
            room_id,
            rpc,
            poll_interval_ms=poll_interval_ms,
            on_poll_error=self._on_sync_error,
            on_poll_recover=self._on_sync_recovered,
            **controller_kwargs,
        )
        self.error: str | None = None
        self.mic_permission_denied = False
        self.banner: str | None = None

    @property
    def is_joined(self) -> bool:
        return self.controller.is_joined

    @property
    def is_muted(self) -> bool:
        return self.controller.is_muted

    @property
    def guidance(self) -> tuple[str, ...]:
        return PERMISSION_GUIDANCE if self.mic_permission_denied else ()

    async def join(self) -> bool:
        self.error = None
        self.mic_permission_denied = False
        try:
            await self.controller.join()
        except MicrophonePermissionDenied:
            self.mic_permission_denied = True
            self.error = PERMISSION_DENIED_MESSAGE
        except MicrophoneNotFound:
            self.error = NO_MICROPHONE_MESSAGE
        except CallStateError as exc:
            logger.warning("voice join ignored: %s", exc)
            return False
        except Exception as exc:
            logger.error("Failed to join voice chat in room %s: %s", self.room_id, exc)
            self.error = JOIN_FAILED_MESSAGE
        if self.error is not None:
            self._notify(events.VOICE_JOIN_FAILED, self.error)
            return False
        self._notify(events.VOICE_JOINED, "Joined voice chat")
        return True

    async def leave(self) -> bool:
        if not self.is_joined:
            return True
        try:
            await self.controller.leave()
        except SignalingTransportError as exc:
            logger.error("Failed to leave voice chat in room %s: %s", self.room_id, exc)
            self.error = LEAVE_FAILED_MESSAGE
            self._notify(events.VOICE_LEAVE_FAILED, self.error)
            return False
        self.error = None
        self.banner = None
        self._notify(events.VOICE_LEFT, "Left voice chat")
        return True

    def toggle_mute(self) -> bool | None:
        """Flip the microphone.  Returns the new muted state, or None when not joined."""
        if not self.is_joined:
            return None
        muted = self.controller.toggle_mute()
        if muted:
            self._notify(events.VOICE_MUTED, "Microphone muted")
        else:
            self._notify(events.VOICE_UNMUTED, "Microphone unmuted")
        return muted

    def retry(self) -> None:
        self.error = None
        self.mic_permission_denied = False
        self.banner = None

    def dismiss_banner(self) -> None:
        self.banner = None

    async def resync(self) -> bool:
        """Retry action on the banner: poll immediately instead of waiting for the next tick."""
        poller = self.controller.poller
        if poller is None:
            return False
        return await poller.tick()

    def _on_sync_error(self, exc: Exception) -> None:
        if self.banner is None:
            self._notify(events.VOICE_SYNC_FAILED, SYNC_FAILED_MESSAGE)
        self.banner = SYNC_FAILED_MESSAGE

    def _on_sync_recovered(self) -> None:
        if self.banner is not None:
            self._notify(events.VOICE_SYNC_RESTORED, "Voice session reconnected")
        self.banner = None

    async def __aenter__(self) -> "VoicePanel":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.leave()
