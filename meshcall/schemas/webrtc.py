"""WebRTC 시그널링 관련 Pydantic 스키마"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SignalingMessageType(str, Enum):
    """시그널링 메시지 타입"""
    # Client -> Server
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    MEDIA_STATE_CHANGE = "media-state-change"
    SCREEN_SHARE_START = "screen-share-start"
    SCREEN_SHARE_STOP = "screen-share-stop"
    # Server -> Client
    CONNECTED = "connected"
    ROOM_JOINED = "room-joined"
    ROOM_ERROR = "room-error"
    ROOM_LEFT = "room-left"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    PARTICIPANT_MEDIA_CHANGE = "participant-media-change"
    PARTICIPANT_SCREEN_SHARE = "participant-screen-share"


class UserData(BaseModel):
    """입장 시 클라이언트가 보내는 사용자 정보

    name/roomName 외의 필드는 그대로 보존되어 다른 참여자에게 전달된다.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = "Guest User"
    room_name: str | None = Field(default=None, alias="roomName")


class MediaState(BaseModel):
    """참여자 미디어 상태"""
    model_config = ConfigDict(populate_by_name=True)

    audio_enabled: bool = Field(default=True, alias="audioEnabled")
    video_enabled: bool = Field(default=True, alias="videoEnabled")
    is_screen_sharing: bool = Field(default=False, alias="isScreenSharing")


# ===== WebSocket 시그널링 메시지 스키마 (Client -> Server) =====


class JoinRoomMessage(BaseModel):
    """회의실 입장 메시지"""
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId", min_length=1)
    user_data: UserData = Field(default_factory=UserData, alias="userData")


class OfferMessage(BaseModel):
    """SDP Offer 메시지"""
    model_config = ConfigDict(populate_by_name=True)

    target_socket_id: str = Field(alias="targetSocketId")
    offer: dict  # RTCSessionDescriptionInit


class AnswerMessage(BaseModel):
    """SDP Answer 메시지"""
    model_config = ConfigDict(populate_by_name=True)

    target_socket_id: str = Field(alias="targetSocketId")
    answer: dict  # RTCSessionDescriptionInit


class IceCandidateMessage(BaseModel):
    """ICE Candidate 메시지"""
    model_config = ConfigDict(populate_by_name=True)

    target_socket_id: str = Field(alias="targetSocketId")
    candidate: dict  # RTCIceCandidateInit


class MediaStateChangeMessage(BaseModel):
    """미디어 상태 변경 메시지 (부분 업데이트)"""
    model_config = ConfigDict(populate_by_name=True)

    audio_enabled: bool | None = Field(default=None, alias="audioEnabled")
    video_enabled: bool | None = Field(default=None, alias="videoEnabled")
    is_screen_sharing: bool | None = Field(default=None, alias="isScreenSharing")


# ===== Server -> Client 메시지 =====


class ServerMessage(BaseModel):
    """서버가 보내는 메시지의 공통 베이스"""
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """WebSocket 전송용 JSON 딕셔너리로 변환"""
        return self.model_dump(mode="json", by_alias=True)


class ConnectedMessage(ServerMessage):
    """연결 수립 알림 (서버가 발급한 connection id 전달)"""
    type: SignalingMessageType = SignalingMessageType.CONNECTED
    socket_id: str = Field(serialization_alias="socketId")


class ParticipantSummary(BaseModel):
    """기존 참여자 요약"""
    socket_id: str = Field(serialization_alias="socketId")
    user_data: dict[str, Any] = Field(serialization_alias="userData")


class RoomInfo(BaseModel):
    """회의실 정보"""
    name: str
    participant_count: int = Field(serialization_alias="participantCount")
    created_at: datetime = Field(serialization_alias="createdAt")


class RoomJoinedMessage(ServerMessage):
    """입장 완료 메시지"""
    type: SignalingMessageType = SignalingMessageType.ROOM_JOINED
    room_id: str = Field(serialization_alias="roomId")
    participants: list[ParticipantSummary]
    room_info: RoomInfo = Field(serialization_alias="roomInfo")


class RoomErrorMessage(ServerMessage):
    """입장 실패 메시지"""
    type: SignalingMessageType = SignalingMessageType.ROOM_ERROR
    message: str


class RoomLeftMessage(ServerMessage):
    """명시적 퇴장 확인"""
    type: SignalingMessageType = SignalingMessageType.ROOM_LEFT


class UserJoinedMessage(ServerMessage):
    """다른 사용자 입장 알림"""
    type: SignalingMessageType = SignalingMessageType.USER_JOINED
    socket_id: str = Field(serialization_alias="socketId")
    user_data: dict[str, Any] = Field(serialization_alias="userData")
    participant_count: int = Field(serialization_alias="participantCount")


class UserLeftMessage(ServerMessage):
    """다른 사용자 퇴장 알림"""
    type: SignalingMessageType = SignalingMessageType.USER_LEFT
    socket_id: str = Field(serialization_alias="socketId")
    participant_count: int = Field(serialization_alias="participantCount")


class RelayedOfferMessage(ServerMessage):
    """전달된 Offer"""
    type: SignalingMessageType = SignalingMessageType.OFFER
    from_socket_id: str = Field(serialization_alias="fromSocketId")
    from_user_data: dict[str, Any] = Field(serialization_alias="fromUserData")
    offer: dict


class RelayedAnswerMessage(ServerMessage):
    """전달된 Answer"""
    type: SignalingMessageType = SignalingMessageType.ANSWER
    from_socket_id: str = Field(serialization_alias="fromSocketId")
    from_user_data: dict[str, Any] = Field(serialization_alias="fromUserData")
    answer: dict


class RelayedIceCandidateMessage(ServerMessage):
    """전달된 ICE Candidate"""
    type: SignalingMessageType = SignalingMessageType.ICE_CANDIDATE
    from_socket_id: str = Field(serialization_alias="fromSocketId")
    candidate: dict


class ParticipantMediaChangeMessage(ServerMessage):
    """미디어 상태 변경 알림"""
    type: SignalingMessageType = SignalingMessageType.PARTICIPANT_MEDIA_CHANGE
    socket_id: str = Field(serialization_alias="socketId")
    media_state: dict[str, Any] = Field(serialization_alias="mediaState")


class ParticipantScreenShareMessage(ServerMessage):
    """화면공유 상태 알림"""
    type: SignalingMessageType = SignalingMessageType.PARTICIPANT_SCREEN_SHARE
    socket_id: str = Field(serialization_alias="socketId")
    is_screen_sharing: bool = Field(serialization_alias="isScreenSharing")


# ===== REST 스키마 =====


class IceServer(BaseModel):
    """ICE 서버 설정"""
    urls: str | list[str]
    username: str | None = None
    credential: str | None = None


class IceConfigResponse(BaseModel):
    """ICE 서버 목록 응답"""
    ice_servers: list[IceServer] = Field(serialization_alias="iceServers")


class CreateRoomRequest(BaseModel):
    """회의실 생성 요청"""
    model_config = ConfigDict(populate_by_name=True)

    room_name: str | None = Field(default=None, alias="roomName")


class CreateRoomResponse(BaseModel):
    """회의실 생성 응답"""
    room_id: str = Field(serialization_alias="roomId")
    room_name: str = Field(serialization_alias="roomName")
    join_url: str = Field(serialization_alias="joinUrl")


class RoomDetailsResponse(BaseModel):
    """회의실 정보 응답"""
    id: str
    name: str
    participant_count: int = Field(serialization_alias="participantCount")
    max_participants: int = Field(serialization_alias="maxParticipants")
    created_at: datetime = Field(serialization_alias="createdAt")


class HealthResponse(BaseModel):
    """헬스 체크 응답"""
    status: str
    timestamp: datetime
    active_rooms: int = Field(serialization_alias="activeRooms")
    total_participants: int = Field(serialization_alias="totalParticipants")
