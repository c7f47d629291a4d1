"""Fixed-interval poll loop over a room's signaling slot.

The signaling API has no push channel, so a joined participant fetches the
slot every tick and hands the snapshot to a reconcile callback.  Ticks run
one at a time on a single asyncio task; reconcile never overlaps itself.
Errors never stop the loop: they are logged and reported to on_error (the
voice panel shows a retriable banner) and the next tick tries again.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from voicerelay.core.errors import SignalingTransportError
from voicerelay.schemas.voice import VoiceSessionState

logger = logging.getLogger(__name__)


class PollSynchronizer:
    def __init__(
        self,
        room_id: str,
        fetch: Callable[[str], Awaitable[VoiceSessionState | None]],
        reconcile: Callable[[VoiceSessionState | None], Awaitable[None]],
        interval_ms: int,
        *,
        on_error: Callable[[Exception], None] | None = None,
        on_recover: Callable[[], None] | None = None,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.room_id = room_id
        self.interval = interval_ms / 1000
        self._fetch = fetch
        self._reconcile = reconcile
        self._on_error = on_error
        self._on_recover = on_recover
        self._task: asyncio.Task | None = None
        self._failing = False
        self._tick_lock = asyncio.Lock()
        self._stopped = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name=f"voice-poll:{self.room_id}")

    async def stop(self) -> None:
        """
        Cancel the loop and wait for it, including a tick started from outside
        the loop by tick().  Later tick() calls do nothing.  Must not be awaited
        from inside a tick.
        """
        self._stopped = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        async with self._tick_lock:
            pass

    async def tick(self) -> bool:
        """Fetch once and reconcile.  Returns False if the tick failed or the poller is stopped."""
        async with self._tick_lock:
            if self._stopped:
                return False
            return await self._tick()

    async def _tick(self) -> bool:
        try:
            state = await self._fetch(self.room_id)
            await self._reconcile(state)
        except SignalingTransportError as exc:
            logger.warning("voice poll for room %s failed: %s", self.room_id, exc)
            self._report(exc)
            return False
        except Exception as exc:
            logger.exception("voice poll for room %s: unexpected error: %s", self.room_id, exc)
            self._report(exc)
            return False
        self.ticks += 1
        if self._failing:
            self._failing = False
            logger.info("voice poll for room %s recovered", self.room_id)
            if self._on_recover is not None:
                self._on_recover()
        return True

    def _report(self, exc: Exception) -> None:
        self._failing = True
        if self._on_error is not None:
            self._on_error(exc)

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)
