from meshcall.schemas.webrtc import (
    MediaState,
    ServerMessage,
    SignalingMessageType,
    UserData,
)

__all__ = [
    "MediaState",
    "ServerMessage",
    "SignalingMessageType",
    "UserData",
]
