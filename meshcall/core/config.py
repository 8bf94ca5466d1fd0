from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from meshcall.core.webrtc_config import DEFAULT_ICE_SERVERS, DEFAULT_MAX_PARTICIPANTS


class Settings(BaseSettings):
    """애플리케이션 설정"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # 앱 설정
    app_name: str = "meshcall signaling"
    app_env: str = "development"
    debug: bool = False

    # CORS
    cors_origins: list[str] = ["https://localhost:3000"]

    # 회의실
    max_participants: int = DEFAULT_MAX_PARTICIPANTS
    default_room_name: str = "Video Call"

    # ICE 서버 (STUN/TURN 주소만 전달, 서버 구현은 범위 밖)
    ice_servers: list[dict] = DEFAULT_ICE_SERVERS

    # 클라이언트 협상 설정
    signaling_url: str = "ws://localhost:3001/api/v1/ws"
    max_pending_candidates: int = 256
    negotiation_timeout: float | None = None

    # OpenTelemetry
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"


@lru_cache
def get_settings() -> Settings:
    """설정 싱글톤 반환"""
    return Settings()
