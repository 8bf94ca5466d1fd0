"""PeerConnection 엔진 - 협상 상태 머신이 구동하는 로컬 WebRTC 엔진

상태 머신은 PeerConnectionEngine 프로토콜에만 의존하고,
기본 구현은 aiortc RTCPeerConnection을 감싼 AiortcPeerEngine이다.
"""

import logging
from typing import Callable, Iterable, Protocol

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

logger = logging.getLogger(__name__)


class PeerConnectionEngine(Protocol):
    """상대 한 명과의 PeerConnection 추상화"""

    @property
    def signaling_state(self) -> str:
        ...

    @property
    def local_description(self) -> dict | None:
        ...

    async def create_offer(self) -> dict:
        ...

    async def create_answer(self) -> dict:
        ...

    async def set_local_description(self, description: dict) -> None:
        ...

    async def set_remote_description(self, description: dict) -> None:
        ...

    async def add_ice_candidate(self, candidate: dict) -> None:
        ...

    async def rollback(self) -> None:
        ...

    async def close(self) -> None:
        ...


# (remote_id, ice_servers) -> engine
EngineFactory = Callable[[str, list[dict]], PeerConnectionEngine]

TrackCallback = Callable[[str, MediaStreamTrack], None]


def build_configuration(ice_servers: list[dict]) -> RTCConfiguration:
    """ICE 서버 설정 딕셔너리 목록을 aiortc RTCConfiguration으로 변환"""
    servers = []
    for server in ice_servers:
        urls = server["urls"]
        # urls가 문자열이면 리스트로 변환
        if isinstance(urls, str):
            urls = [urls]
        servers.append(
            RTCIceServer(
                urls=urls,
                username=server.get("username"),
                credential=server.get("credential"),
            )
        )
    return RTCConfiguration(iceServers=servers)


def parse_ice_candidate(candidate: dict):
    """브라우저 형식 ICE candidate를 aiortc RTCIceCandidate로 변환

    Args:
        candidate: {"candidate": "candidate:... typ host ...", "sdpMid": "0", "sdpMLineIndex": 0}

    Returns:
        RTCIceCandidate 또는 None (빈 candidate = end-of-candidates)

    Raises:
        ValueError: candidate 문자열 형식이 잘못된 경우
    """
    candidate_str = candidate.get("candidate", "")
    if not candidate_str:
        return None

    # "candidate:" 접두사 제거
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]

    # foundation component protocol priority ip port "typ" type
    if len(candidate_str.split()) < 8:
        raise ValueError(f"Invalid candidate format: {candidate_str[:50]}")

    try:
        ice_candidate = candidate_from_sdp(candidate_str)
    except (ValueError, IndexError) as e:
        raise ValueError(f"Invalid candidate format: {candidate_str[:50]}") from e

    ice_candidate.sdpMid = candidate.get("sdpMid")
    ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
    return ice_candidate


def _to_dict(description: RTCSessionDescription) -> dict:
    return {"sdp": description.sdp, "type": description.type}


def _from_dict(description: dict) -> RTCSessionDescription:
    sdp = description.get("sdp") if isinstance(description, dict) else None
    sdp_type = description.get("type") if isinstance(description, dict) else None
    if not sdp or not sdp_type:
        raise ValueError(f"Invalid SDP format: sdp={bool(sdp)}, type={sdp_type}")
    return RTCSessionDescription(sdp=sdp, type=sdp_type)


class AiortcPeerEngine:
    """aiortc RTCPeerConnection 기반 엔진

    aiortc는 rollback을 지원하지 않으므로, rollback은 PeerConnection을
    같은 설정과 로컬 트랙으로 새로 만드는 방식으로 로컬 description을 되돌린다.
    """

    def __init__(
        self,
        remote_id: str,
        ice_servers: list[dict],
        tracks: Iterable[MediaStreamTrack] = (),
        on_track: TrackCallback | None = None,
    ):
        self.remote_id = remote_id
        self._configuration = build_configuration(ice_servers)
        self._tracks = list(tracks)
        self._on_track = on_track
        self.pc = self._create_peer_connection()

    def _create_peer_connection(self) -> RTCPeerConnection:
        logger.info(
            f"[AiortcPeerEngine] Creating RTCPeerConnection for {self.remote_id} "
            f"with {len(self._configuration.iceServers)} ICE servers"
        )
        pc = RTCPeerConnection(configuration=self._configuration)

        # 로컬 트랙은 읽기 전용으로 공유
        for track in self._tracks:
            pc.addTrack(track)

        @pc.on("track")
        def on_track(track):
            logger.info(f"[AiortcPeerEngine] {track.kind} track received from {self.remote_id}")
            if self._on_track:
                self._on_track(self.remote_id, track)

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(
                f"[AiortcPeerEngine] Connection state: {pc.connectionState} for {self.remote_id}"
            )

        return pc

    @property
    def signaling_state(self) -> str:
        return self.pc.signalingState

    @property
    def local_description(self) -> dict | None:
        if self.pc.localDescription is None:
            return None
        return _to_dict(self.pc.localDescription)

    async def create_offer(self) -> dict:
        # 보낼 트랙이 없으면 수신 전용으로 오디오/비디오를 요청
        if not self.pc.getTransceivers():
            self.pc.addTransceiver("audio", direction="recvonly")
            self.pc.addTransceiver("video", direction="recvonly")
        return _to_dict(await self.pc.createOffer())

    async def create_answer(self) -> dict:
        return _to_dict(await self.pc.createAnswer())

    async def set_local_description(self, description: dict) -> None:
        # aiortc는 여기서 ICE gathering을 마치고 candidate를 SDP에 포함시킨다
        await self.pc.setLocalDescription(_from_dict(description))

    async def set_remote_description(self, description: dict) -> None:
        await self.pc.setRemoteDescription(_from_dict(description))

    async def add_ice_candidate(self, candidate: dict) -> None:
        ice_candidate = parse_ice_candidate(candidate)
        if ice_candidate is None:
            logger.debug(f"[AiortcPeerEngine] End-of-candidates from {self.remote_id}")
            return
        await self.pc.addIceCandidate(ice_candidate)

    async def rollback(self) -> None:
        old_pc = self.pc
        self.pc = self._create_peer_connection()
        await old_pc.close()
        logger.info(f"[AiortcPeerEngine] Rolled back local description for {self.remote_id}")

    async def close(self) -> None:
        await self.pc.close()
