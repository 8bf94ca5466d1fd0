"""피어별 협상 상태 머신

상대 한 명당 PeerLink 하나가 signaling 상태와 대기 중인 ICE candidate를 소유한다.
같은 PeerLink에 대한 이벤트는 link lock으로 직렬화되고,
서로 다른 PeerLink는 동시에 처리될 수 있다.

상태 전이:
    stable           --initiate-->        have-local-offer
    have-local-offer --answer-->          stable (대기 candidate drain)
    stable           --offer-->           have-remote-offer --> stable (answer 전송, drain)
    have-local-offer --offer (polite)-->  rollback 후 offer 처리
    have-local-offer --offer (impolite)-> 무시
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from meshcall.core.telemetry import get_signaling_metrics
from meshcall.core.webrtc_config import DEFAULT_ICE_SERVERS
from meshcall.schemas.webrtc import SignalingMessageType
from meshcall.services.webrtc.engine import EngineFactory, PeerConnectionEngine

logger = logging.getLogger(__name__)

# 서버로 보낼 메시지 송신 함수
SendFunc = Callable[[dict], Awaitable[None]]


class SignalingState(str, Enum):
    STABLE = "stable"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"


@dataclass
class PeerLink:
    """상대 한 명과의 협상 상태"""

    remote_id: str
    engine: PeerConnectionEngine
    send: SendFunc
    # glare 시 polite 쪽만 rollback 한다
    polite: bool = True
    max_pending_candidates: int = 256
    negotiation_timeout: float | None = None
    on_timeout: Callable[["PeerLink"], Awaitable[None]] | None = None

    signaling_state: SignalingState = SignalingState.STABLE
    remote_description_set: bool = False
    pending_candidates: deque = field(default_factory=deque)
    history: list[SignalingState] = field(default_factory=lambda: [SignalingState.STABLE])
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _timeout_task: asyncio.Task | None = field(default=None, repr=False)

    def _transition(self, state: SignalingState) -> None:
        if state != self.signaling_state:
            logger.debug(f"[PeerLink {self.remote_id}] {self.signaling_state.value} -> {state.value}")
        self.signaling_state = state
        self.history.append(state)

    async def _send(self, message_type: SignalingMessageType, key: str, payload: dict) -> None:
        await self.send({"type": message_type.value, "targetSocketId": self.remote_id, key: payload})

    async def initiate(self) -> bool:
        """offer 생성 및 전송 (stable이 아니면 건너뜀)"""
        async with self.lock:
            if self.closed:
                return False
            if self.signaling_state != SignalingState.STABLE:
                logger.warning(
                    f"[PeerLink {self.remote_id}] Skipping offer: state is {self.signaling_state.value}"
                )
                return False

            try:
                offer = await self.engine.create_offer()
                await self.engine.set_local_description(offer)
            except Exception as e:
                logger.error(f"[PeerLink {self.remote_id}] Failed to create offer: {e}")
                return False

            self._transition(SignalingState.HAVE_LOCAL_OFFER)
            self._arm_timeout()
            await self._send(
                SignalingMessageType.OFFER, "offer", self.engine.local_description or offer
            )
            logger.info(f"[PeerLink {self.remote_id}] Offer sent")
            return True

    async def accept_offer(self, offer: dict) -> bool:
        """상대 offer 처리 후 answer 전송"""
        async with self.lock:
            if self.closed:
                return False

            if self.signaling_state == SignalingState.HAVE_LOCAL_OFFER:
                metrics = get_signaling_metrics()
                if not self.polite:
                    logger.warning(
                        f"[PeerLink {self.remote_id}] Offer collision: ignoring remote offer (impolite)"
                    )
                    if metrics:
                        metrics.glare_total.add(1, {"action": "ignore"})
                    return False

                logger.info(f"[PeerLink {self.remote_id}] Offer collision: rolling back (polite)")
                if metrics:
                    metrics.glare_total.add(1, {"action": "rollback"})
                if not await self._rollback():
                    return False

            try:
                await self.engine.set_remote_description(offer)
            except Exception as e:
                logger.error(f"[PeerLink {self.remote_id}] Failed to set remote offer: {e}")
                return False

            self.remote_description_set = True
            self._transition(SignalingState.HAVE_REMOTE_OFFER)

            try:
                answer = await self.engine.create_answer()
                await self.engine.set_local_description(answer)
            except Exception as e:
                logger.error(f"[PeerLink {self.remote_id}] Failed to create answer: {e}")
                await self._rollback()
                return False

            await self._send(
                SignalingMessageType.ANSWER, "answer", self.engine.local_description or answer
            )
            self._transition(SignalingState.STABLE)
            logger.info(f"[PeerLink {self.remote_id}] Answer sent")

            await self._drain_pending()
            return True

    async def accept_answer(self, answer: dict) -> bool:
        """상대 answer 처리 (have-local-offer가 아니면 무시)"""
        async with self.lock:
            if self.closed:
                return False
            if self.signaling_state != SignalingState.HAVE_LOCAL_OFFER:
                logger.warning(
                    f"[PeerLink {self.remote_id}] Ignoring answer in state {self.signaling_state.value}"
                )
                return False

            try:
                await self.engine.set_remote_description(answer)
            except Exception as e:
                logger.error(f"[PeerLink {self.remote_id}] Failed to set remote answer: {e}")
                return False

            self.remote_description_set = True
            self._cancel_timeout()
            self._transition(SignalingState.STABLE)
            logger.info(f"[PeerLink {self.remote_id}] Answer applied")

            await self._drain_pending()
            return True

    async def add_candidate(self, candidate: dict) -> bool:
        """ICE candidate 적용 또는 대기열 추가

        Returns:
            엔진에 바로 적용했으면 True, 대기열에 넣었거나 실패했으면 False
        """
        async with self.lock:
            if self.closed:
                return False

            if not self.remote_description_set:
                self._enqueue(candidate)
                return False

            return await self._apply_candidate(candidate)

    async def drain_pending(self) -> int:
        async with self.lock:
            return await self._drain_pending()

    async def close(self) -> None:
        """연결 종료 - 대기 candidate와 타이머 정리"""
        self.closed = True
        self.pending_candidates.clear()
        self._cancel_timeout()

        async with self.lock:
            try:
                await self.engine.close()
            except Exception as e:
                logger.warning(f"[PeerLink {self.remote_id}] Error closing engine: {e}")

        logger.info(f"[PeerLink {self.remote_id}] Closed")

    def _enqueue(self, candidate: dict) -> None:
        if len(self.pending_candidates) >= self.max_pending_candidates:
            self.pending_candidates.popleft()
            logger.warning(
                f"[PeerLink {self.remote_id}] Pending candidate queue full "
                f"({self.max_pending_candidates}), dropping oldest"
            )
        self.pending_candidates.append(candidate)
        logger.debug(
            f"[PeerLink {self.remote_id}] Queued candidate ({len(self.pending_candidates)} pending)"
        )

        metrics = get_signaling_metrics()
        if metrics:
            metrics.candidates_queued_total.add(1)

    async def _apply_candidate(self, candidate: dict) -> bool:
        try:
            await self.engine.add_ice_candidate(candidate)
        except Exception as e:
            logger.warning(f"[PeerLink {self.remote_id}] Failed to add ICE candidate: {e}")
            return False
        return True

    async def _drain_pending(self) -> int:
        """대기 candidate를 받은 순서대로 적용 (실패한 것은 건너뜀)"""
        applied = 0
        while self.pending_candidates:
            candidate = self.pending_candidates.popleft()
            if await self._apply_candidate(candidate):
                applied += 1

        if applied:
            logger.info(f"[PeerLink {self.remote_id}] Drained {applied} pending candidates")
        return applied

    async def _rollback(self) -> bool:
        self._cancel_timeout()
        try:
            await self.engine.rollback()
        except Exception as e:
            logger.error(f"[PeerLink {self.remote_id}] Rollback failed: {e}")
            return False

        self.remote_description_set = False
        self._transition(SignalingState.STABLE)
        return True

    def _arm_timeout(self) -> None:
        if self.negotiation_timeout is None or self.on_timeout is None:
            return
        self._cancel_timeout()
        self._timeout_task = asyncio.create_task(self._expire(self.negotiation_timeout))

    def _cancel_timeout(self) -> None:
        task = self._timeout_task
        self._timeout_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _expire(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        self._timeout_task = None
        if self.closed or self.signaling_state == SignalingState.STABLE:
            return
        logger.warning(
            f"[PeerLink {self.remote_id}] Negotiation timed out in {self.signaling_state.value}"
        )
        await self.on_timeout(self)


class Negotiator:
    """로컬 참여자의 PeerLink 집합 관리

    상대 id당 PeerLink는 최대 하나이며, 생성과 제거는 await 없이 일어난다.
    """

    def __init__(
        self,
        send: SendFunc,
        engine_factory: EngineFactory,
        ice_servers: list[dict] | None = None,
        max_pending_candidates: int = 256,
        negotiation_timeout: float | None = None,
    ):
        self._send = send
        self._engine_factory = engine_factory
        self.ice_servers = ice_servers if ice_servers is not None else list(DEFAULT_ICE_SERVERS)
        self.max_pending_candidates = max_pending_candidates
        self.negotiation_timeout = negotiation_timeout
        self.local_id: str | None = None
        # remote_id -> PeerLink
        self._links: dict[str, PeerLink] = {}

    def _is_polite(self, remote_id: str) -> bool:
        # 로컬 id를 모르면 항상 양보
        if self.local_id is None:
            return True
        return self.local_id < remote_id

    def _ensure_link(self, remote_id: str) -> PeerLink:
        link = self._links.get(remote_id)
        if link is None:
            link = PeerLink(
                remote_id=remote_id,
                engine=self._engine_factory(remote_id, self.ice_servers),
                send=self._send,
                polite=self._is_polite(remote_id),
                max_pending_candidates=self.max_pending_candidates,
                negotiation_timeout=self.negotiation_timeout,
                on_timeout=self._on_link_timeout,
            )
            self._links[remote_id] = link
            logger.info(
                f"[Negotiator] Created link to {remote_id} "
                f"({'polite' if link.polite else 'impolite'})"
            )
        return link

    def get_link(self, remote_id: str) -> PeerLink | None:
        return self._links.get(remote_id)

    def state_of(self, remote_id: str) -> SignalingState | None:
        link = self._links.get(remote_id)
        return link.signaling_state if link else None

    @property
    def remote_ids(self) -> list[str]:
        return list(self._links)

    async def should_initiate(self, remote_id: str) -> bool:
        """상대에게 offer 전송"""
        return await self._ensure_link(remote_id).initiate()

    async def on_room_joined(self, participants: list[dict]) -> None:
        """입장 직후 기존 참여자 각각에게 offer"""
        remote_ids = [p["socketId"] for p in participants if p.get("socketId")]
        if not remote_ids:
            return
        await asyncio.gather(*(self.should_initiate(remote_id) for remote_id in remote_ids))

    def on_user_joined(self, remote_id: str) -> PeerLink:
        """새 참여자용 link만 준비 (offer는 입장자가 보낸다)"""
        return self._ensure_link(remote_id)

    async def handle_offer(self, remote_id: str, offer: dict) -> bool:
        return await self._ensure_link(remote_id).accept_offer(offer)

    async def handle_answer(self, remote_id: str, answer: dict) -> bool:
        link = self._links.get(remote_id)
        if link is None:
            logger.warning(f"[Negotiator] Answer from unknown peer {remote_id}, ignoring")
            return False
        return await link.accept_answer(answer)

    async def handle_candidate(self, remote_id: str, candidate: dict) -> bool:
        # offer보다 먼저 도착한 candidate도 link를 만들어 대기열에 보관
        return await self._ensure_link(remote_id).add_candidate(candidate)

    async def drain_pending(self, remote_id: str) -> int:
        link = self._links.get(remote_id)
        if link is None:
            return 0
        return await link.drain_pending()

    async def remove_peer(self, remote_id: str) -> None:
        """상대 퇴장 - link 제거 후 종료"""
        link = self._links.pop(remote_id, None)
        if link is None:
            return
        await link.close()

    async def close(self) -> None:
        """모든 link 종료"""
        links = list(self._links.values())
        self._links.clear()
        for link in links:
            await link.close()

    async def _on_link_timeout(self, link: PeerLink) -> None:
        if self._links.get(link.remote_id) is link:
            await self.remove_peer(link.remote_id)
