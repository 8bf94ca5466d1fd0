"""시그널링 클라이언트 - 서버 메시지를 협상 상태 머신으로 연결

사용 예:
    client = SignalingClient("ws://localhost:3001/api/v1/ws")

    @client.on("user-joined")
    def on_user_joined(message):
        ...

    await client.connect()
    await client.join("room-abc123xyz", name="Alice")
    await client.run()
"""

import json
import logging
from typing import Iterable
from urllib.parse import urlsplit, urlunsplit

import httpx
import websockets
from aiortc import MediaStreamTrack
from pyee.asyncio import AsyncIOEventEmitter

from meshcall.core.config import get_settings
from meshcall.core.webrtc_config import DEFAULT_ICE_SERVERS
from meshcall.schemas.webrtc import SignalingMessageType
from meshcall.services.webrtc.engine import AiortcPeerEngine, EngineFactory
from meshcall.services.webrtc.negotiation import Negotiator

logger = logging.getLogger(__name__)


def ice_config_url_from(signaling_url: str) -> str:
    """ws(s)://host/api/v1/ws -> http(s)://host/api/v1/ice"""
    parts = urlsplit(signaling_url)
    scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme)
    path = parts.path.rsplit("/", 1)[0] + "/ice"
    return urlunsplit((scheme, parts.netloc, path, "", ""))


async def fetch_ice_servers(url: str, timeout: float = 5.0) -> list[dict]:
    """ICE 서버 목록 조회 (실패하면 기본 STUN 서버)"""
    try:
        async with httpx.AsyncClient(timeout=timeout) as http:
            response = await http.get(url)
            response.raise_for_status()
            ice_servers = response.json()["iceServers"]
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.warning(f"Failed to fetch ICE servers from {url}, using default STUN: {e}")
        return [DEFAULT_ICE_SERVERS[0]]

    logger.info(f"Fetched {len(ice_servers)} ICE servers")
    return ice_servers


class SignalingClient(AsyncIOEventEmitter):
    """참여자 한 명의 시그널링 연결

    협상 메시지(offer/answer/ice-candidate)는 Negotiator가 처리하고,
    나머지 서버 메시지는 메시지 type 이름의 이벤트로 emit 된다.
    """

    def __init__(
        self,
        url: str | None = None,
        ice_config_url: str | None = None,
        engine_factory: EngineFactory | None = None,
        tracks: Iterable[MediaStreamTrack] = (),
        max_pending_candidates: int | None = None,
        negotiation_timeout: float | None = None,
    ):
        super().__init__()
        settings = get_settings()

        self.url = url or settings.signaling_url
        self.ice_config_url = ice_config_url or ice_config_url_from(self.url)
        self._tracks = list(tracks)
        self._engine_factory = engine_factory or self._create_engine
        self._max_pending_candidates = max_pending_candidates or settings.max_pending_candidates
        self._negotiation_timeout = (
            negotiation_timeout if negotiation_timeout is not None else settings.negotiation_timeout
        )

        self.ws = None
        self.socket_id: str | None = None
        self.room_id: str | None = None
        self.negotiator: Negotiator | None = None

    def _create_engine(self, remote_id: str, ice_servers: list[dict]) -> AiortcPeerEngine:
        return AiortcPeerEngine(
            remote_id,
            ice_servers,
            tracks=self._tracks,
            on_track=lambda peer_id, track: self.emit("track", peer_id, track),
        )

    async def connect(self) -> None:
        """ICE 서버 조회 후 시그널링 서버 연결"""
        ice_servers = await fetch_ice_servers(self.ice_config_url)
        self.negotiator = Negotiator(
            self.send,
            self._engine_factory,
            ice_servers=ice_servers,
            max_pending_candidates=self._max_pending_candidates,
            negotiation_timeout=self._negotiation_timeout,
        )
        self.ws = await websockets.connect(self.url)
        logger.info(f"Connected to signaling server {self.url}")

    async def run(self) -> None:
        """연결이 끊길 때까지 서버 메시지 처리"""
        try:
            async for raw in self.ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Non-JSON message from server ignored")
                    continue
                await self.handle_message(message)
        except websockets.ConnectionClosed as e:
            logger.info(f"Signaling connection closed: {e}")
        finally:
            if self.negotiator:
                await self.negotiator.close()
            self.emit("disconnected")

    async def handle_message(self, message: dict) -> None:
        """서버 메시지 하나 처리"""
        msg_type = message.get("type")
        negotiator = self.negotiator

        if msg_type == SignalingMessageType.CONNECTED:
            self.socket_id = message["socketId"]
            negotiator.local_id = self.socket_id
            logger.info(f"Assigned socket id {self.socket_id}")

        elif msg_type == SignalingMessageType.ROOM_JOINED:
            # 서버가 이전 회의실에서 암묵적으로 내보냈으므로 기존 link 정리
            if self.room_id is not None:
                await negotiator.close()
            self.room_id = message["roomId"]
            logger.info(
                f"Joined room {self.room_id} with {len(message['participants'])} participants"
            )
            await negotiator.on_room_joined(message["participants"])

        elif msg_type == SignalingMessageType.USER_JOINED:
            negotiator.on_user_joined(message["socketId"])

        elif msg_type == SignalingMessageType.USER_LEFT:
            await negotiator.remove_peer(message["socketId"])

        elif msg_type == SignalingMessageType.ROOM_LEFT:
            self.room_id = None
            await negotiator.close()

        elif msg_type == SignalingMessageType.OFFER:
            await negotiator.handle_offer(message["fromSocketId"], message["offer"])

        elif msg_type == SignalingMessageType.ANSWER:
            await negotiator.handle_answer(message["fromSocketId"], message["answer"])

        elif msg_type == SignalingMessageType.ICE_CANDIDATE:
            await negotiator.handle_candidate(message["fromSocketId"], message["candidate"])

        elif msg_type == SignalingMessageType.ROOM_ERROR:
            logger.warning(f"Room error: {message.get('message')}")

        elif msg_type not in (
            SignalingMessageType.PARTICIPANT_MEDIA_CHANGE,
            SignalingMessageType.PARTICIPANT_SCREEN_SHARE,
        ):
            logger.warning(f"Unknown message type from server: {msg_type}")
            return

        self.emit(msg_type, message)

    async def send(self, message: dict) -> None:
        await self.ws.send(json.dumps(message))

    async def join(self, room_id: str, name: str = "Guest User", room_name: str | None = None) -> None:
        """회의실 입장 요청 (결과는 room-joined/room-error 이벤트)"""
        user_data = {"name": name}
        if room_name:
            user_data["roomName"] = room_name
        await self.send(
            {"type": SignalingMessageType.JOIN_ROOM.value, "roomId": room_id, "userData": user_data}
        )

    async def leave(self) -> None:
        """회의실 퇴장 (연결은 유지)"""
        await self.send({"type": SignalingMessageType.LEAVE_ROOM.value})

    async def set_media_state(
        self,
        audio_enabled: bool | None = None,
        video_enabled: bool | None = None,
    ) -> None:
        message = {"type": SignalingMessageType.MEDIA_STATE_CHANGE.value}
        if audio_enabled is not None:
            message["audioEnabled"] = audio_enabled
        if video_enabled is not None:
            message["videoEnabled"] = video_enabled
        await self.send(message)

    async def start_screen_share(self) -> None:
        await self.send({"type": SignalingMessageType.SCREEN_SHARE_START.value})

    async def stop_screen_share(self) -> None:
        await self.send({"type": SignalingMessageType.SCREEN_SHARE_STOP.value})

    async def close(self) -> None:
        """모든 PeerLink와 시그널링 연결 종료"""
        if self.negotiator:
            await self.negotiator.close()
        if self.ws:
            await self.ws.close()
