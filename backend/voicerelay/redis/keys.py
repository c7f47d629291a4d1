"""
Namespaced Redis key helpers.

Voice signaling slots are room-scoped:
  {SERVER_DOMAIN}:voice:{room_id}:session     →  hash  {started, offer, answer}
  {SERVER_DOMAIN}:voice:{room_id}:candidates  →  list of JSON candidates

Keys are prefixed with SERVER_DOMAIN to avoid collisions when multiple
deployments share a Redis cluster.
"""

from voicerelay.config import settings

# ── Voice signaling (room-scoped) ────────────────────────────────────────────


def voice_session_key(room_id: str) -> str:
    return f"{settings.SERVER_DOMAIN}:voice:{room_id}:session"


def voice_candidates_key(room_id: str) -> str:
    return f"{settings.SERVER_DOMAIN}:voice:{room_id}:candidates"
