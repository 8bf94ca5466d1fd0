"""WebRTC 관련 설정"""

# 기본 ICE 서버 (STUN만 사용)
# TURN 서버가 필요하면 ICE_SERVERS 환경변수로 자격 증명과 함께 지정
DEFAULT_ICE_SERVERS = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:stun1.l.google.com:19302"},
]

# 회의실 기본 최대 참여자 수
DEFAULT_MAX_PARTICIPANTS = 8

# 회의실 ID 생성 규칙: "room-" + 9자리 소문자/숫자
ROOM_ID_PREFIX = "room-"
ROOM_ID_LENGTH = 9


# WebSocket 에러 코드
class WSErrorCode:
    """WebSocket 에러 코드"""
    SERVER_SHUTDOWN = 4503
    INTERNAL_ERROR = 4500
