from pydantic import BaseModel, Field

from livecast.shared.config import config

DEV_ROOM_ID = "dev-room-001"

DEFAULT_STUN_URLS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
]


class AppEnvironConfig(BaseModel):
    # Anything but production runs in dev mode: fixed room id, debug-friendly defaults.
    APP_ENV: str = (config.get("APP_ENV") or "development").strip().lower()
    DEBUG: bool = config.get_bool("DEBUG", False)

    # Relay server
    API_HOST: str = config.get("API_HOST", "0.0.0.0").strip()
    API_PORT: int = config.get_int("API_PORT", 3000)
    # Room state lives in process memory, so the relay must run a single worker.
    API_WORKERS: int = 1
    API_CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: config.get_list(
            "API_CORS_ORIGINS",
            [x for x in ["http://localhost:3000", config.get("PUBLIC_APP_URL")] if x],
        )
    )
    PUBLIC_APP_URL: str | None = (config.get("PUBLIC_APP_URL") or "").strip() or None

    # ICE configuration
    ICE_STUN_URLS: list[str] = Field(
        default_factory=lambda: config.get_list("ICE_STUN_URLS", DEFAULT_STUN_URLS)
    )

    # Client transport
    SIGNALING_URL: str = config.get("SIGNALING_URL", "ws://localhost:3000/ws").strip()
    SOCKET_CONNECT_TIMEOUT_MS: int = config.get_int("SOCKET_CONNECT_TIMEOUT_MS", 5000)
    CREATE_ROOM_TIMEOUT_MS: int = config.get_int("CREATE_ROOM_TIMEOUT_MS", 15000)
    JOIN_ROOM_TIMEOUT_MS: int = config.get_int("JOIN_ROOM_TIMEOUT_MS", 15000)
    TRANSPORT_RECONNECT_DELAY_MS: int = config.get_int("TRANSPORT_RECONNECT_DELAY_MS", 1000)
    TRANSPORT_RECONNECT_DELAY_MAX_MS: int = config.get_int("TRANSPORT_RECONNECT_DELAY_MAX_MS", 5000)
    TRANSPORT_RECONNECT_ATTEMPTS: int = config.get_int("TRANSPORT_RECONNECT_ATTEMPTS", 10)

    # Viewer-side WebRTC retry
    RECONNECT_BASE_DELAY_MS: int = config.get_int("RECONNECT_BASE_DELAY_MS", 2000)
    RECONNECT_MAX_ATTEMPTS: int = config.get_int("RECONNECT_MAX_ATTEMPTS", 5)

    @property
    def DEV_MODE(self) -> bool:
        return self.APP_ENV != "production"


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
