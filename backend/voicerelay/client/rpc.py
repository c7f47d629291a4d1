"""HTTP client for the voice signaling API.

Every call is request/response.  Any failure (connection error, timeout,
non-2xx status) is raised as SignalingTransportError so callers decide
whether it is fatal (join/leave) or best-effort (candidate publication).
"""

import logging
from urllib.parse import quote

import httpx

from voicerelay.config import settings
from voicerelay.core.errors import SignalingTransportError
from voicerelay.schemas.voice import IceCandidate, VoiceSessionState

logger = logging.getLogger(__name__)


class SignalingClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.SIGNALING_API_URL,
            timeout=timeout if timeout is not None else settings.SIGNALING_TIMEOUT,
            transport=transport,
            headers=headers,
        )

    async def __aenter__(self) -> "SignalingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text
            try:
                body = exc.response.json()
                if isinstance(body, dict) and "detail" in body:
                    detail = body["detail"]
            except ValueError:
                pass
            raise SignalingTransportError(operation, str(detail), exc.response.status_code) from exc
        except httpx.RequestError as exc:
            raise SignalingTransportError(operation, f"{type(exc).__name__}: {exc}") from exc

    @staticmethod
    def _voice_path(room_id: str, suffix: str = "") -> str:
        return f"/rooms/{quote(room_id, safe='')}/voice{suffix}"

    async def start_voice_session(self, room_id: str) -> None:
        await self._request("startVoiceSession", "POST", self._voice_path(room_id, "/start"))

    async def end_voice_session(self, room_id: str) -> None:
        await self._request("endVoiceSession", "DELETE", self._voice_path(room_id))

    async def send_sdp_offer(self, room_id: str, offer: str) -> None:
        await self._request("sendSdpOffer", "PUT", self._voice_path(room_id, "/offer"), json={"sdp": offer})

    async def send_sdp_answer(self, room_id: str, answer: str) -> None:
        await self._request("sendSdpAnswer", "PUT", self._voice_path(room_id, "/answer"), json={"sdp": answer})

    async def add_ice_candidate(self, room_id: str, candidate: IceCandidate) -> None:
        await self._request(
            "addIceCandidate",
            "POST",
            self._voice_path(room_id, "/candidates"),
            json=candidate.model_dump(by_alias=True),
        )

    async def get_voice_session_state(self, room_id: str) -> VoiceSessionState | None:
        resp = await self._request("getVoiceSessionState", "GET", self._voice_path(room_id))
        try:
            body = resp.json()
            if body is None:
                return None
            return VoiceSessionState.model_validate(body)
        except ValueError as exc:
            raise SignalingTransportError("getVoiceSessionState", f"malformed response: {exc}") from exc
