"""WebRTC 시그널링 통합 테스트

총 14개 테스트:
- REST: 5개 (ICE 설정, 회의실 생성, 회의실 조회, 회의실 없음, health)
- WebSocket 연결: 2개 (connected 메시지, 잘못된 메시지 무시)
- 회의실: 4개 (입장 알림, 정원 초과, 연결 해제 시 퇴장, leave-room)
- 중계: 3개 (offer/answer, ICE candidate, 미디어 상태)
"""

import pytest

from meshcall.schemas.webrtc import SignalingMessageType
from meshcall.services.room_service import room_directory


def join(ws, room_id: str, name: str) -> dict:
    """입장 요청 후 응답 반환"""
    ws.send_json({"type": "join-room", "roomId": room_id, "userData": {"name": name}})
    return ws.receive_json()


# ===== REST 테스트 (5개) =====


def test_get_ice_config(client):
    """ICE 서버 목록 조회"""
    response = client.get("/api/v1/ice")

    assert response.status_code == 200
    ice_servers = response.json()["iceServers"]
    assert ice_servers[0]["urls"] == "stun:stun.l.google.com:19302"


def test_create_room(client):
    """빈 회의실 생성"""
    response = client.post("/api/v1/rooms", json={"roomName": "Standup"})

    assert response.status_code == 200
    data = response.json()
    assert data["roomId"].startswith("room-")
    assert len(data["roomId"]) == len("room-") + 9
    assert data["roomName"] == "Standup"
    assert data["joinUrl"].endswith(f"?room={data['roomId']}")
    assert room_directory.get_room(data["roomId"]) is not None


def test_get_room(client):
    """회의실 정보 조회"""
    room_id = client.post("/api/v1/rooms", json={}).json()["roomId"]

    response = client.get(f"/api/v1/rooms/{room_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == room_id
    assert data["name"] == "Video Call"
    assert data["participantCount"] == 0
    assert data["maxParticipants"] == 8


def test_get_room_not_found(client):
    """없는 회의실은 404"""
    response = client.get("/api/v1/rooms/room-missing00")

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "NOT_FOUND"


def test_health(client):
    """health 체크에 회의실/참여자 수 포함"""
    with client.websocket_connect("/api/v1/ws") as ws:
        ws.receive_json()
        join(ws, "r1", "Alice")

        data = client.get("/health").json()

    assert data["status"] == "healthy"
    assert data["activeRooms"] == 1
    assert data["totalParticipants"] == 1


# ===== WebSocket 연결 테스트 (2개) =====


def test_websocket_sends_connected(client):
    """연결 직후 서버 발급 socket id 전달"""
    with client.websocket_connect("/api/v1/ws") as ws:
        message = ws.receive_json()

    assert message["type"] == SignalingMessageType.CONNECTED
    assert message["socketId"]


def test_websocket_ignores_malformed_messages(client):
    """JSON이 아니거나 형식이 틀린 메시지는 무시하고 연결 유지"""
    with client.websocket_connect("/api/v1/ws") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json(["not", "an", "object"])
        ws.send_json({"type": "unknown-type"})
        ws.send_json({"type": ["offer"], "targetSocketId": "x", "offer": {}})
        ws.send_json({"type": {"nested": True}})
        ws.send_json({"type": "join-room"})

        reply = join(ws, "r1", "Alice")

    assert reply["type"] == SignalingMessageType.ROOM_JOINED


# ===== 회의실 테스트 (4개) =====


def test_join_notifies_existing_members(client):
    """입장자는 기존 참여자 목록을, 기존 참여자는 user-joined를 받는다"""
    with client.websocket_connect("/api/v1/ws") as ws_a, client.websocket_connect("/api/v1/ws") as ws_b:
        id_a = ws_a.receive_json()["socketId"]
        id_b = ws_b.receive_json()["socketId"]

        reply_a = join(ws_a, "r1", "Alice")
        assert reply_a["participants"] == []
        assert reply_a["roomInfo"]["participantCount"] == 1

        reply_b = join(ws_b, "r1", "Bob")
        assert [p["socketId"] for p in reply_b["participants"]] == [id_a]
        assert reply_b["participants"][0]["userData"]["name"] == "Alice"

        notice = ws_a.receive_json()
        assert notice["type"] == SignalingMessageType.USER_JOINED
        assert notice["socketId"] == id_b
        assert notice["userData"]["name"] == "Bob"
        assert notice["participantCount"] == 2


def test_join_full_room(client, monkeypatch):
    """정원 초과 시 room-error, 연결은 유지"""
    monkeypatch.setattr(room_directory, "_max_participants", 1)

    with client.websocket_connect("/api/v1/ws") as ws_a, client.websocket_connect("/api/v1/ws") as ws_b:
        ws_a.receive_json()
        ws_b.receive_json()
        join(ws_a, "r1", "Alice")

        reply = join(ws_b, "r1", "Bob")
        assert reply == {"type": SignalingMessageType.ROOM_ERROR, "message": "Room is full"}

        # 다른 회의실에는 입장 가능
        assert join(ws_b, "r2", "Bob")["type"] == SignalingMessageType.ROOM_JOINED


def test_disconnect_notifies_remaining(client):
    """연결이 끊기면 남은 참여자에게 user-left"""
    with client.websocket_connect("/api/v1/ws") as ws_a:
        ws_a.receive_json()
        join(ws_a, "r1", "Alice")

        with client.websocket_connect("/api/v1/ws") as ws_b:
            id_b = ws_b.receive_json()["socketId"]
            join(ws_b, "r1", "Bob")
            ws_a.receive_json()  # user-joined

        notice = ws_a.receive_json()
        assert notice == {
            "type": SignalingMessageType.USER_LEFT,
            "socketId": id_b,
            "participantCount": 1,
        }
        assert room_directory.lookup(id_b) is None


def test_leave_room_keeps_connection(client):
    """leave-room 후 room-left 응답, 다른 참여자는 user-left"""
    with client.websocket_connect("/api/v1/ws") as ws_a, client.websocket_connect("/api/v1/ws") as ws_b:
        ws_a.receive_json()
        id_b = ws_b.receive_json()["socketId"]
        join(ws_a, "r1", "Alice")
        join(ws_b, "r1", "Bob")
        ws_a.receive_json()  # user-joined

        ws_b.send_json({"type": "leave-room"})
        assert ws_b.receive_json()["type"] == SignalingMessageType.ROOM_LEFT
        assert ws_a.receive_json()["socketId"] == id_b

        # 같은 연결로 다시 입장
        assert join(ws_b, "r1", "Bob")["type"] == SignalingMessageType.ROOM_JOINED


# ===== 중계 테스트 (3개) =====


@pytest.fixture
def joined_pair(client):
    """같은 회의실에 입장한 두 연결"""
    with client.websocket_connect("/api/v1/ws") as ws_a, client.websocket_connect("/api/v1/ws") as ws_b:
        id_a = ws_a.receive_json()["socketId"]
        id_b = ws_b.receive_json()["socketId"]
        join(ws_a, "r1", "Alice")
        join(ws_b, "r1", "Bob")
        ws_a.receive_json()  # user-joined
        yield (ws_a, id_a), (ws_b, id_b)


def test_offer_answer_relay(joined_pair):
    """offer와 answer가 대상에게 발신자 정보와 함께 전달"""
    (ws_a, id_a), (ws_b, id_b) = joined_pair
    offer = {"type": "offer", "sdp": "v=0 offer"}
    answer = {"type": "answer", "sdp": "v=0 answer"}

    ws_b.send_json({"type": "offer", "targetSocketId": id_a, "offer": offer})
    relayed_offer = ws_a.receive_json()
    assert relayed_offer["type"] == SignalingMessageType.OFFER
    assert relayed_offer["fromSocketId"] == id_b
    assert relayed_offer["fromUserData"]["name"] == "Bob"
    assert relayed_offer["offer"] == offer

    ws_a.send_json({"type": "answer", "targetSocketId": id_b, "answer": answer})
    relayed_answer = ws_b.receive_json()
    assert relayed_answer["fromSocketId"] == id_a
    assert relayed_answer["answer"] == answer


def test_ice_candidate_relay(joined_pair):
    """ICE candidate 전달 (없는 대상은 조용히 무시)"""
    (ws_a, id_a), (ws_b, id_b) = joined_pair
    candidate = {"candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host", "sdpMid": "0"}

    ws_a.send_json({"type": "ice-candidate", "targetSocketId": "nobody", "candidate": candidate})
    ws_a.send_json({"type": "ice-candidate", "targetSocketId": id_b, "candidate": candidate})

    relayed = ws_b.receive_json()
    assert relayed == {
        "type": SignalingMessageType.ICE_CANDIDATE,
        "fromSocketId": id_a,
        "candidate": candidate,
    }


def test_media_state_change_broadcast(joined_pair):
    """미디어 상태 변경과 화면공유는 다른 참여자에게 fan-out"""
    (ws_a, id_a), (ws_b, id_b) = joined_pair

    ws_a.send_json({"type": "media-state-change", "audioEnabled": False})
    message = ws_b.receive_json()
    assert message["type"] == SignalingMessageType.PARTICIPANT_MEDIA_CHANGE
    assert message["socketId"] == id_a
    assert message["mediaState"] == {"audioEnabled": False}

    ws_a.send_json({"type": "screen-share-start"})
    message = ws_b.receive_json()
    assert message["type"] == SignalingMessageType.PARTICIPANT_SCREEN_SHARE
    assert message["isScreenSharing"] is True
    assert room_directory.lookup(id_a).media_state.is_screen_sharing is True
