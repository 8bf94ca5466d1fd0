"""pytest 설정 및 공유 fixture

테스트 인프라:
- 테스트 설정
- FastAPI TestClient
- Mock 송신자 (ConnectionManager 대체)
- 싱글톤 디렉터리 정리
"""

from collections.abc import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from meshcall.core.config import Settings
from meshcall.main import app
from meshcall.services.room_service import RoomDirectory, room_directory
from meshcall.services.signaling_service import connection_manager


# ===== 테스트 설정 =====


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """테스트용 설정"""
    return Settings(
        app_env="test",
        debug=True,
        max_participants=3,
        otel_enabled=False,
    )


# ===== 디렉터리 Fixture =====


@pytest.fixture
def notifier() -> MagicMock:
    """연결 단위 송신자 mock (항상 전달 성공)"""
    mock = MagicMock()
    mock.send = MagicMock(return_value=True)
    return mock


@pytest.fixture
def directory(notifier: MagicMock, test_settings: Settings) -> RoomDirectory:
    """테스트용 회의실 디렉터리 (정원 3명)"""
    return RoomDirectory(notifier, max_participants=test_settings.max_participants)


@pytest.fixture
def sent_to(notifier: MagicMock):
    """특정 연결로 보낸 메시지 목록 조회 함수"""

    def _sent_to(connection_id: str) -> list[dict]:
        return [c.args[1] for c in notifier.send.call_args_list if c.args[0] == connection_id]

    return _sent_to


# ===== API Client Fixture =====


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """동기 TestClient (WebSocket 테스트용)"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def cleanup_singletons():
    """각 테스트 후 싱글톤 상태 정리"""
    yield
    room_directory._rooms.clear()
    room_directory._participants.clear()
    room_directory._locks.clear()
    connection_manager._connections.clear()
    connection_manager._outboxes.clear()
    connection_manager._writers.clear()
