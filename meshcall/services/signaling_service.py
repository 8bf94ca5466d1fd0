"""WebSocket 시그널링 서비스 - 연결 관리 및 송신 채널"""

import asyncio
import logging
import uuid

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """connection id별 WebSocket 송신 채널 관리

    송신은 연결마다 하나의 큐와 writer task로 직렬화된다.
    send()는 큐에 넣기만 하고 즉시 반환하므로 회의실 임계 구역 안에서
    호출해도 블로킹되지 않는다.
    """

    def __init__(self):
        # connection_id -> WebSocket
        self._connections: dict[str, WebSocket] = {}
        # connection_id -> 송신 큐
        self._outboxes: dict[str, asyncio.Queue] = {}
        # connection_id -> writer task
        self._writers: dict[str, asyncio.Task] = {}

    async def connect(self, websocket: WebSocket) -> str:
        """WebSocket 연결 수락 및 connection id 발급"""
        await websocket.accept()

        connection_id = str(uuid.uuid4())
        outbox: asyncio.Queue = asyncio.Queue()

        self._connections[connection_id] = websocket
        self._outboxes[connection_id] = outbox
        self._writers[connection_id] = asyncio.create_task(
            self._write_loop(connection_id, websocket, outbox)
        )

        logger.info(f"Connection {connection_id} accepted")
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """송신 채널 해제 (이후 이 id로 가는 메시지는 버려진다)"""
        self._connections.pop(connection_id, None)
        self._outboxes.pop(connection_id, None)
        writer = self._writers.pop(connection_id, None)

        if writer and not writer.done():
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass

        logger.info(f"Connection {connection_id} released")

    def send(self, connection_id: str, message: dict) -> bool:
        """특정 연결에 메시지 전송 (fire-and-forget)

        Returns:
            대상 연결이 존재해 큐에 넣었으면 True, 없으면 False
        """
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return False

        outbox.put_nowait(message)
        return True

    def is_connected(self, connection_id: str) -> bool:
        """연결 존재 여부"""
        return connection_id in self._connections

    def get_connection_count(self) -> int:
        """현재 연결 수 조회"""
        return len(self._connections)

    async def close_all_connections(self, code: int, reason: str) -> None:
        """모든 연결 종료 (서버 종료 시)"""
        for connection_id, websocket in list(self._connections.items()):
            try:
                await websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug(f"Error closing connection {connection_id}: {e}")
            await self.disconnect(connection_id)

        logger.info("All signaling connections closed")

    async def _write_loop(
        self,
        connection_id: str,
        websocket: WebSocket,
        outbox: asyncio.Queue,
    ) -> None:
        """큐에 쌓인 메시지를 순서대로 전송"""
        while True:
            message = await outbox.get()
            try:
                await websocket.send_json(message)
            except Exception as e:
                # 연결이 끊긴 경우 - 이후 send()는 False, 나머지 정리는 수신 루프의 finally에서 처리
                logger.warning(f"Failed to send message to {connection_id}: {e}")
                if self._outboxes.get(connection_id) is outbox:
                    del self._outboxes[connection_id]
                return


# 싱글톤 인스턴스
connection_manager = ConnectionManager()
