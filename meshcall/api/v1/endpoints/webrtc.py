"""WebRTC 시그널링 및 회의실 엔드포인트"""

import json
import logging
import random
import string
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect

from meshcall.core.config import Settings, get_settings
from meshcall.core.webrtc_config import ROOM_ID_LENGTH, ROOM_ID_PREFIX, WSErrorCode
from meshcall.handlers.websocket_message_handlers import dispatch_message
from meshcall.schemas.webrtc import (
    ConnectedMessage,
    CreateRoomRequest,
    CreateRoomResponse,
    IceConfigResponse,
    IceServer,
    RoomDetailsResponse,
)
from meshcall.services.room_service import room_directory
from meshcall.services.signaling_service import connection_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebRTC"])


def generate_room_id() -> str:
    return ROOM_ID_PREFIX + "".join(
        random.choices(string.ascii_lowercase + string.digits, k=ROOM_ID_LENGTH)
    )


# ===== REST 엔드포인트 =====


@router.get("/ice", response_model=IceConfigResponse)
async def get_ice_config(settings: Annotated[Settings, Depends(get_settings)]):
    """ICE 서버(STUN/TURN) 목록 조회"""
    return IceConfigResponse(ice_servers=[IceServer(**server) for server in settings.ice_servers])


@router.post("/rooms", response_model=CreateRoomResponse)
async def create_room(body: CreateRoomRequest, request: Request):
    """빈 회의실 생성"""
    room_id = generate_room_id()
    room = room_directory.create_room(room_id, body.room_name)

    base_url = str(request.base_url).rstrip("/")
    return CreateRoomResponse(
        room_id=room.id,
        room_name=room.display_name,
        join_url=f"{base_url}/?room={room.id}",
    )


@router.get("/rooms/{room_id}", response_model=RoomDetailsResponse)
async def get_room(room_id: str):
    """회의실 정보 조회"""
    room = room_directory.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail={"error": "NOT_FOUND", "message": "Room not found"})

    return RoomDetailsResponse(
        id=room.id,
        name=room.display_name,
        participant_count=room.participant_count,
        max_participants=room.max_participants,
        created_at=room.created_at,
    )


# ===== WebSocket 엔드포인트 =====


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket 시그널링 엔드포인트 (참여자당 하나의 연결)"""
    connection_id = await connection_manager.connect(websocket)
    connection_manager.send(connection_id, ConnectedMessage(socket_id=connection_id).to_payload())

    try:
        # 메시지 처리 루프
        await handle_websocket_messages(websocket, connection_id)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: connection={connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
        try:
            await websocket.close(code=WSErrorCode.INTERNAL_ERROR, reason="Internal error")
        except Exception as close_error:
            logger.debug(f"Error closing connection {connection_id}: {close_error}")
    finally:
        # 송신 채널을 먼저 닫아 떠난 연결로 중계되지 않도록 한 뒤 퇴장 처리
        await connection_manager.disconnect(connection_id)
        await room_directory.leave(connection_id)


async def handle_websocket_messages(websocket: WebSocket, connection_id: str) -> None:
    """WebSocket 메시지 처리 - Strategy Pattern 사용"""
    while True:
        raw = await websocket.receive_text()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Non-JSON message from {connection_id} ignored")
            continue

        if not isinstance(data, dict):
            logger.warning(f"Malformed message from {connection_id} ignored")
            continue

        await dispatch_message(data.get("type"), connection_id, data)
