"""Local microphone capture.

The microphone is opened through aiortc's MediaPlayer (FFmpeg input device)
and wrapped in a MutableAudioTrack: muting swaps captured frames for
silence, so the peer connection keeps a live track and nothing has to be
renegotiated.
"""

import asyncio
import errno
import logging

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from av import AudioFrame

from voicerelay.config import settings
from voicerelay.core.errors import MediaAcquisitionError, MicrophoneNotFound, MicrophonePermissionDenied

logger = logging.getLogger(__name__)

_NOT_FOUND_ERRNOS = {errno.ENOENT, errno.ENODEV, errno.ENXIO}
_DENIED_ERRNOS = {errno.EACCES, errno.EPERM}


class MutableAudioTrack(MediaStreamTrack):
    """Relays a source audio track, emitting silence while disabled."""

    kind = "audio"

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.source = source
        self.enabled = True

    async def recv(self) -> AudioFrame:
        frame = await self.source.recv()
        if self.enabled:
            return frame
        silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
        for plane in silent.planes:
            plane.update(bytes(plane.buffer_size))
        silent.pts = frame.pts
        silent.sample_rate = frame.sample_rate
        silent.time_base = frame.time_base
        return silent

    def stop(self) -> None:
        super().stop()
        self.source.stop()


class LocalAudio:
    """Handle on the captured microphone; owned by exactly one CallController."""

    def __init__(self, track: MutableAudioTrack, player: MediaPlayer | None = None) -> None:
        self.track = track
        self._player = player

    @property
    def tracks(self) -> list[MediaStreamTrack]:
        return [self.track]

    @property
    def muted(self) -> bool:
        return not self.track.enabled

    def set_muted(self, muted: bool) -> None:
        self.track.enabled = not muted

    def stop(self) -> None:
        # Stopping the player's track also stops the player's decode thread
        self.track.stop()


def _classify(exc: Exception) -> MediaAcquisitionError:
    if isinstance(exc, PermissionError) or getattr(exc, "errno", None) in _DENIED_ERRNOS:
        return MicrophonePermissionDenied(str(exc))
    if isinstance(exc, FileNotFoundError) or getattr(exc, "errno", None) in _NOT_FOUND_ERRNOS:
        return MicrophoneNotFound(str(exc))
    return MediaAcquisitionError(str(exc))


async def acquire_microphone(device: str | None = None, fmt: str | None = None) -> LocalAudio:
    """Open the capture device.  Raises a MediaAcquisitionError subclass on failure."""
    device = device or settings.MIC_DEVICE
    fmt = fmt or settings.MIC_FORMAT
    try:
        # Opening an FFmpeg input device blocks; keep it off the event loop
        player = await asyncio.to_thread(MediaPlayer, device, format=fmt)
    except Exception as exc:
        error = _classify(exc)
        logger.warning("microphone %s (%s) unavailable: %s", device, fmt, exc)
        raise error from exc
    if player.audio is None:
        if player.video is not None:
            player.video.stop()
        raise MicrophoneNotFound(f"capture device {device!r} has no audio stream")
    logger.info("microphone opened: %s (%s)", device, fmt)
    return LocalAudio(MutableAudioTrack(player.audio), player)
