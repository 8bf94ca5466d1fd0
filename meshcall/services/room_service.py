"""회의실 디렉터리 - 회의실/참여자 상태 관리

회의실(room_id -> Room)과 참여자(connection_id -> Participant) 두 맵을 소유하고,
모든 변경은 join/leave를 통해 회의실 단위 lock 안에서만 일어난다.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Protocol

from meshcall.core.telemetry import get_signaling_metrics
from meshcall.core.webrtc_config import DEFAULT_MAX_PARTICIPANTS
from meshcall.schemas.webrtc import (
    MediaState,
    MediaStateChangeMessage,
    UserData,
    UserJoinedMessage,
    UserLeftMessage,
)

logger = logging.getLogger(__name__)


class RoomDirectoryError(Exception):
    """회의실 디렉터리 오류"""


class RoomFullError(RoomDirectoryError):
    """정원 초과로 입장 거부"""

    def __init__(self, room_id: str, max_participants: int):
        super().__init__("Room is full")
        self.room_id = room_id
        self.max_participants = max_participants


class Notifier(Protocol):
    """연결 단위 메시지 송신자 (ConnectionManager)"""

    def send(self, connection_id: str, message: dict) -> bool:
        ...


@dataclass
class Room:
    id: str
    display_name: str
    max_participants: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    member_ids: set[str] = field(default_factory=set)

    @property
    def participant_count(self) -> int:
        return len(self.member_ids)

    def is_full(self) -> bool:
        return len(self.member_ids) >= self.max_participants


@dataclass
class Participant:
    connection_id: str
    room_id: str
    user_data: UserData
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    media_state: MediaState = field(default_factory=MediaState)

    @property
    def name(self) -> str:
        return self.user_data.name

    def to_user_data(self) -> dict[str, Any]:
        """다른 참여자에게 전달할 사용자 정보"""
        data = self.user_data.model_dump(mode="json", by_alias=True, exclude_none=True)
        data.update(self.media_state.model_dump(by_alias=True))
        data["roomId"] = self.room_id
        data["joinedAt"] = self.joined_at.isoformat()
        return data


@dataclass(frozen=True)
class RoomSnapshot:
    id: str
    display_name: str
    participant_count: int
    max_participants: int
    created_at: datetime

    @classmethod
    def of(cls, room: Room) -> "RoomSnapshot":
        return cls(
            id=room.id,
            display_name=room.display_name,
            participant_count=room.participant_count,
            max_participants=room.max_participants,
            created_at=room.created_at,
        )


@dataclass(frozen=True)
class JoinResult:
    room: RoomSnapshot
    participant: Participant
    # 입장한 본인을 제외한 기존 참여자 (입장자가 이들에게 offer를 보낸다)
    others: list[Participant]


@dataclass(frozen=True)
class LeaveResult:
    room_id: str
    connection_id: str
    remaining: int
    room_deleted: bool


@dataclass
class _RoomLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class RoomDirectory:
    """회의실/참여자 디렉터리"""

    def __init__(
        self,
        notifier: Notifier,
        max_participants: int = DEFAULT_MAX_PARTICIPANTS,
        default_room_name: str = "Video Call",
    ):
        self._notifier = notifier
        self._max_participants = max_participants
        self._default_room_name = default_room_name
        # room_id -> Room
        self._rooms: dict[str, Room] = {}
        # connection_id -> Participant
        self._participants: dict[str, Participant] = {}
        # room_id -> lock (사용 중인 동안만 유지)
        self._locks: dict[str, _RoomLock] = {}

    @asynccontextmanager
    async def _room_guard(self, room_id: str) -> AsyncIterator[None]:
        """회의실 단위 상호 배제"""
        entry = self._locks.get(room_id)
        if entry is None:
            entry = self._locks[room_id] = _RoomLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[room_id]

    @asynccontextmanager
    async def _rooms_guard(self, room_ids: set[str]) -> AsyncIterator[None]:
        """여러 회의실 lock을 room_id 순서로 획득"""
        async with AsyncExitStack() as stack:
            for room_id in sorted(room_ids):
                await stack.enter_async_context(self._room_guard(room_id))
            yield

    async def join(self, connection_id: str, room_id: str, user_data: UserData) -> JoinResult:
        """회의실 입장

        이미 다른 회의실에 있으면 대상 회의실 정원을 확인한 뒤 이전 회의실에서 나간다.

        Raises:
            RoomFullError: 정원이 가득 찬 경우 (이전 회의실 포함 상태는 변경되지 않음)
        """
        metrics = get_signaling_metrics()

        while True:
            previous = self._participants.get(connection_id)
            room_ids = {room_id}
            if previous is not None:
                room_ids.add(previous.room_id)

            async with self._rooms_guard(room_ids):
                # lock 대기 중 참여 회의실이 바뀌었으면 다시 시도
                if self._participants.get(connection_id) is not previous:
                    continue

                room = self._rooms.get(room_id)
                if room is None:
                    room = Room(
                        id=room_id,
                        display_name=user_data.room_name or self._default_room_name,
                        max_participants=self._max_participants,
                    )

                if room.is_full() and connection_id not in room.member_ids:
                    logger.info(
                        f"Join rejected: room {room_id} is full "
                        f"({room.participant_count}/{room.max_participants})"
                    )
                    if metrics:
                        metrics.room_joins_total.add(1, {"result": "room_full"})
                    raise RoomFullError(room_id, room.max_participants)

                # 한 참여자는 최대 한 회의실에만 속한다
                if previous is not None:
                    self._remove_locked(previous)

                # 같은 회의실 재입장으로 방금 삭제된 경우 포함
                if room_id not in self._rooms:
                    self._rooms[room_id] = room
                    logger.info(f"Room {room_id} created ({room.display_name})")
                    if metrics:
                        metrics.active_rooms.add(1)

                return self._add_locked(connection_id, room, user_data)

    def _add_locked(self, connection_id: str, room: Room, user_data: UserData) -> JoinResult:
        others = [self._participants[member_id] for member_id in room.member_ids]

        participant = Participant(
            connection_id=connection_id,
            room_id=room.id,
            user_data=user_data,
        )
        room.member_ids.add(connection_id)
        self._participants[connection_id] = participant

        # 기존 참여자들에게 입장 알림 (입장자 본인 제외)
        joined = UserJoinedMessage(
            socket_id=connection_id,
            user_data=participant.to_user_data(),
            participant_count=room.participant_count,
        ).to_payload()
        for other in others:
            self._notifier.send(other.connection_id, joined)

        metrics = get_signaling_metrics()
        if metrics:
            metrics.room_joins_total.add(1, {"result": "joined"})
            metrics.active_participants.add(1)

        logger.info(
            f"User {participant.name} ({connection_id}) joined room {room.id} "
            f"({room.participant_count}/{room.max_participants})"
        )
        return JoinResult(room=RoomSnapshot.of(room), participant=participant, others=others)

    async def leave(self, connection_id: str) -> LeaveResult | None:
        """회의실 퇴장 (멱등 - 입장하지 않은 연결이면 아무 동작 안 함)"""
        participant = self._participants.get(connection_id)
        if participant is None:
            return None

        async with self._room_guard(participant.room_id):
            # lock 대기 중 다른 leave가 먼저 처리된 경우
            if self._participants.get(connection_id) is not participant:
                return None
            return self._remove_locked(participant)

    def _remove_locked(self, participant: Participant) -> LeaveResult:
        connection_id = participant.connection_id
        room_id = participant.room_id
        metrics = get_signaling_metrics()

        del self._participants[connection_id]
        if metrics:
            metrics.active_participants.add(-1)

        room = self._rooms.get(room_id)
        if room is None:
            return LeaveResult(room_id, connection_id, remaining=0, room_deleted=False)

        room.member_ids.discard(connection_id)

        left = UserLeftMessage(
            socket_id=connection_id,
            participant_count=room.participant_count,
        ).to_payload()
        for member_id in room.member_ids:
            self._notifier.send(member_id, left)

        logger.info(f"User {connection_id} left room {room_id} ({room.participant_count} remaining)")

        room_deleted = False
        if not room.member_ids:
            del self._rooms[room_id]
            room_deleted = True
            logger.info(f"Room {room_id} deleted (empty)")
            if metrics:
                metrics.active_rooms.add(-1)

        return LeaveResult(
            room_id=room_id,
            connection_id=connection_id,
            remaining=room.participant_count,
            room_deleted=room_deleted,
        )

    def lookup(self, connection_id: str) -> Participant | None:
        """참여자 조회"""
        return self._participants.get(connection_id)

    def create_room(self, room_id: str, display_name: str | None = None) -> RoomSnapshot:
        """빈 회의실 미리 생성 (이미 있으면 기존 회의실 반환)"""
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(
                id=room_id,
                display_name=display_name or self._default_room_name,
                max_participants=self._max_participants,
            )
            self._rooms[room_id] = room
            logger.info(f"Room {room_id} created ({room.display_name}) without members")
            metrics = get_signaling_metrics()
            if metrics:
                metrics.active_rooms.add(1)
        return RoomSnapshot.of(room)

    def get_room(self, room_id: str) -> RoomSnapshot | None:
        """회의실 정보 조회"""
        room = self._rooms.get(room_id)
        if room is None:
            return None
        return RoomSnapshot.of(room)

    def get_room_members(self, room_id: str) -> list[str]:
        """회의실 참여자 connection id 목록 (복사본)"""
        room = self._rooms.get(room_id)
        if room is None:
            return []
        return list(room.member_ids)

    def update_media_state(
        self, connection_id: str, patch: MediaStateChangeMessage
    ) -> Participant | None:
        """참여자 미디어 상태 병합"""
        participant = self._participants.get(connection_id)
        if participant is None:
            return None

        changes = patch.model_dump(exclude_none=True)
        participant.media_state = participant.media_state.model_copy(update=changes)
        return participant

    def set_screen_sharing(self, connection_id: str, is_sharing: bool) -> Participant | None:
        """화면공유 상태 변경"""
        participant = self._participants.get(connection_id)
        if participant is None:
            return None

        participant.media_state = participant.media_state.model_copy(
            update={"is_screen_sharing": is_sharing}
        )
        return participant

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def participant_count(self) -> int:
        return len(self._participants)


def _create_room_directory() -> RoomDirectory:
    from meshcall.core.config import get_settings
    from meshcall.services.signaling_service import connection_manager

    settings = get_settings()
    return RoomDirectory(
        connection_manager,
        max_participants=settings.max_participants,
        default_room_name=settings.default_room_name,
    )


# 싱글톤 인스턴스
room_directory = _create_room_directory()
