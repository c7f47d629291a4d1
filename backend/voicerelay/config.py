import sys

from pydantic_settings import BaseSettings


def _default_mic_format() -> str:
    if sys.platform == "darwin":
        return "avfoundation"
    if sys.platform.startswith("win"):
        return "dshow"
    return "pulse"


def _default_mic_device() -> str:
    if sys.platform == "darwin":
        return "none:default"
    if sys.platform.startswith("win"):
        return "audio=Microphone"
    return "default"


class Settings(BaseSettings):
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Redis: shared voice signaling slots
    # Set to empty string to disable Redis (app falls back to the in-memory store)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # Server identity, used to namespace Redis keys.
    # Each independent deployment sharing a Redis cluster should use a unique value.
    SERVER_DOMAIN: str = "localhost"

    # Signaling store backend: "redis" (falls back to memory if Redis is down) or "memory"
    VOICE_STORE_BACKEND: str = "redis"
    # 0 = sessions live until explicitly ended.  > 0 = every write refreshes a TTL
    # so a session abandoned by a crashed client eventually goes back to Empty.
    VOICE_SESSION_TTL: int = 0

    # Client side: peer connection and polling
    STUN_SERVER_URL: str = "stun:stun.l.google.com:19302"
    VOICE_POLL_INTERVAL_MS: int = 3000
    SIGNALING_API_URL: str = "http://localhost:8000/api"
    SIGNALING_TIMEOUT: float = 10.0

    # Microphone capture (FFmpeg input device + format, see aiortc MediaPlayer)
    MIC_DEVICE: str = _default_mic_device()
    MIC_FORMAT: str = _default_mic_format()

    model_config = {"env_file": ".env"}


settings = Settings()
