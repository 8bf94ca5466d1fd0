"""WebSocket 메시지 핸들러 - Strategy Pattern 구현"""

import logging
from typing import Protocol

from pydantic import ValidationError

from meshcall.schemas.webrtc import (
    AnswerMessage,
    IceCandidateMessage,
    JoinRoomMessage,
    MediaStateChangeMessage,
    OfferMessage,
    ParticipantSummary,
    RoomErrorMessage,
    RoomInfo,
    RoomJoinedMessage,
    RoomLeftMessage,
    SignalingMessageType,
)
from meshcall.services.message_relay import message_relay
from meshcall.services.room_service import RoomFullError, room_directory
from meshcall.services.signaling_service import connection_manager

logger = logging.getLogger(__name__)


class MessageHandler(Protocol):
    """메시지 핸들러 프로토콜"""

    async def handle(self, connection_id: str, data: dict) -> None:
        """메시지 처리

        Args:
            connection_id: 발신 연결 ID (서버 발급)
            data: 메시지 데이터
        """
        ...


class JoinRoomHandler:
    """JOIN_ROOM 메시지 핸들러"""

    async def handle(self, connection_id: str, data: dict) -> None:
        request = JoinRoomMessage.model_validate(data)

        try:
            result = await room_directory.join(connection_id, request.room_id, request.user_data)
        except RoomFullError as e:
            connection_manager.send(connection_id, RoomErrorMessage(message=str(e)).to_payload())
            return

        # 입장자에게 기존 참여자 목록 전송 (입장자가 각 참여자에게 offer)
        reply = RoomJoinedMessage(
            room_id=result.room.id,
            participants=[
                ParticipantSummary(socket_id=p.connection_id, user_data=p.to_user_data())
                for p in result.others
            ],
            room_info=RoomInfo(
                name=result.room.display_name,
                participant_count=result.room.participant_count,
                created_at=result.room.created_at,
            ),
        )
        connection_manager.send(connection_id, reply.to_payload())


class OfferAnswerHandler:
    """OFFER/ANSWER 메시지 핸들러 (통합)"""

    def __init__(self, message_type: SignalingMessageType):
        """
        Args:
            message_type: OFFER 또는 ANSWER
        """
        self.message_type = message_type

    async def handle(self, connection_id: str, data: dict) -> None:
        if self.message_type == SignalingMessageType.OFFER:
            offer = OfferMessage.model_validate(data)
            message_relay.route_offer(connection_id, offer.target_socket_id, offer.offer)
        else:
            answer = AnswerMessage.model_validate(data)
            message_relay.route_answer(connection_id, answer.target_socket_id, answer.answer)


class ICECandidateHandler:
    """ICE_CANDIDATE 메시지 핸들러"""

    async def handle(self, connection_id: str, data: dict) -> None:
        message = IceCandidateMessage.model_validate(data)
        message_relay.route_candidate(connection_id, message.target_socket_id, message.candidate)


class MediaStateChangeHandler:
    """MEDIA_STATE_CHANGE 메시지 핸들러"""

    async def handle(self, connection_id: str, data: dict) -> None:
        patch = MediaStateChangeMessage.model_validate(data)
        message_relay.broadcast_media_state_change(connection_id, patch)


class ScreenShareHandler:
    """SCREEN_SHARE_START/STOP 메시지 핸들러 (통합)"""

    def __init__(self, action: str):
        """
        Args:
            action: "start" 또는 "stop"
        """
        self.action = action

    async def handle(self, connection_id: str, data: dict) -> None:
        message_relay.broadcast_screen_share(connection_id, self.action == "start")


class LeaveRoomHandler:
    """LEAVE_ROOM 메시지 핸들러 - 연결은 유지하고 회의실에서만 나간다"""

    async def handle(self, connection_id: str, data: dict) -> None:
        await room_directory.leave(connection_id)
        connection_manager.send(connection_id, RoomLeftMessage().to_payload())


# 핸들러 레지스트리
HANDLERS: dict[str, MessageHandler] = {
    SignalingMessageType.JOIN_ROOM: JoinRoomHandler(),
    SignalingMessageType.LEAVE_ROOM: LeaveRoomHandler(),
    SignalingMessageType.OFFER: OfferAnswerHandler(SignalingMessageType.OFFER),
    SignalingMessageType.ANSWER: OfferAnswerHandler(SignalingMessageType.ANSWER),
    SignalingMessageType.ICE_CANDIDATE: ICECandidateHandler(),
    SignalingMessageType.MEDIA_STATE_CHANGE: MediaStateChangeHandler(),
    SignalingMessageType.SCREEN_SHARE_START: ScreenShareHandler("start"),
    SignalingMessageType.SCREEN_SHARE_STOP: ScreenShareHandler("stop"),
}


async def dispatch_message(msg_type: str | None, connection_id: str, data: dict) -> bool:
    """메시지 타입에 따라 적절한 핸들러로 디스패치

    Args:
        msg_type: 메시지 타입
        connection_id: 발신 연결 ID
        data: 메시지 데이터

    Returns:
        핸들러가 메시지를 처리했으면 True, 알 수 없거나 잘못된 메시지면 False
    """
    handler = HANDLERS.get(msg_type) if isinstance(msg_type, str) else None
    if handler is None:
        logger.warning(f"Unknown message type from {connection_id}: {msg_type}")
        return False

    try:
        await handler.handle(connection_id, data)
    except ValidationError as e:
        logger.warning(f"Invalid {msg_type} message from {connection_id}: {e.errors()}")
        return False

    return True
