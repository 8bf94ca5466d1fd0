import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from meshcall import __version__
from meshcall.api.v1.router import api_router
from meshcall.core.config import get_settings
from meshcall.core.telemetry import instrument_fastapi, setup_telemetry
from meshcall.core.webrtc_config import WSErrorCode
from meshcall.schemas.webrtc import HealthResponse
from meshcall.services.room_service import room_directory
from meshcall.services.signaling_service import connection_manager

# 로깅 설정
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

settings = get_settings()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """애플리케이션 라이프사이클"""
    # 시작 시: Telemetry 초기화
    if settings.otel_enabled:
        setup_telemetry(
            "meshcall-signaling",
            __version__,
            settings.otel_exporter_otlp_endpoint,
            settings.app_env,
        )
    yield
    # 종료 시: 열린 시그널링 연결 정리
    logger = logging.getLogger(__name__)
    logger.info("Closing signaling connections...")
    await connection_manager.close_all_connections(WSErrorCode.SERVER_SHUTDOWN, "Server shutting down")


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="meshcall - WebRTC mesh signaling server",
    lifespan=lifespan,
)

# OpenTelemetry FastAPI 계측
if settings.otel_enabled:
    instrument_fastapi(app)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API 라우터 등록
app.include_router(api_router)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """헬스 체크"""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        active_rooms=room_directory.room_count,
        total_participants=room_directory.participant_count,
    )
