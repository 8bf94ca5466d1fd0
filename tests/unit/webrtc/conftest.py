"""협상 테스트 공유 fixture"""

import pytest


class FakeEngine:
    """기록만 하는 PeerConnectionEngine"""

    def __init__(self, remote_id: str = "remote", ice_servers: list[dict] | None = None):
        self.remote_id = remote_id
        self.ice_servers = ice_servers
        self.calls: list[str] = []
        self.applied_candidates: list[dict] = []
        self.fail_on: set[str] = set()
        self.bad_candidates: set[str] = set()
        self._local: dict | None = None
        self.closed = False

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    @property
    def signaling_state(self) -> str:
        return "stable"

    @property
    def local_description(self) -> dict | None:
        return self._local

    async def create_offer(self) -> dict:
        self._record("create_offer")
        return {"type": "offer", "sdp": f"offer-to-{self.remote_id}"}

    async def create_answer(self) -> dict:
        self._record("create_answer")
        return {"type": "answer", "sdp": f"answer-to-{self.remote_id}"}

    async def set_local_description(self, description: dict) -> None:
        self._record(f"set_local:{description['type']}")
        self._local = description

    async def set_remote_description(self, description: dict) -> None:
        self._record(f"set_remote:{description['type']}")

    async def add_ice_candidate(self, candidate: dict) -> None:
        self._record("add_ice_candidate")
        if candidate["candidate"] in self.bad_candidates:
            raise ValueError("bad candidate")
        self.applied_candidates.append(candidate)

    async def rollback(self) -> None:
        self._record("rollback")
        self._local = None

    async def close(self) -> None:
        self._record("close")
        self.closed = True


@pytest.fixture
def fake_engine_cls() -> type[FakeEngine]:
    """EngineFactory로 쓸 수 있는 FakeEngine 클래스"""
    return FakeEngine
