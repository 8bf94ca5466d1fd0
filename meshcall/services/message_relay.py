"""메시지 중계 - offer/answer/ICE 지정 전달 및 미디어 상태 fan-out

payload 내용은 해석하지 않는다. 발신자 정보는 항상 서버가 채운다.
"""

import logging

from meshcall.core.telemetry import get_signaling_metrics
from meshcall.schemas.webrtc import (
    MediaStateChangeMessage,
    ParticipantMediaChangeMessage,
    ParticipantScreenShareMessage,
    RelayedAnswerMessage,
    RelayedIceCandidateMessage,
    RelayedOfferMessage,
    SignalingMessageType,
)
from meshcall.services.room_service import Notifier, Participant, RoomDirectory

logger = logging.getLogger(__name__)


class MessageRelay:
    """연결 간 메시지 중계"""

    def __init__(self, directory: RoomDirectory, notifier: Notifier):
        self._directory = directory
        self._notifier = notifier

    def route_offer(self, sender_id: str, target_id: str, offer: dict) -> bool:
        """Offer 전달"""
        sender = self._directory.lookup(sender_id)
        if sender is None:
            return self._drop(SignalingMessageType.OFFER, sender_id, target_id, "unknown sender")

        message = RelayedOfferMessage(
            from_socket_id=sender_id,
            from_user_data=sender.to_user_data(),
            offer=offer,
        )
        return self._deliver(SignalingMessageType.OFFER, sender_id, target_id, message.to_payload())

    def route_answer(self, sender_id: str, target_id: str, answer: dict) -> bool:
        """Answer 전달"""
        sender = self._directory.lookup(sender_id)
        if sender is None:
            return self._drop(SignalingMessageType.ANSWER, sender_id, target_id, "unknown sender")

        message = RelayedAnswerMessage(
            from_socket_id=sender_id,
            from_user_data=sender.to_user_data(),
            answer=answer,
        )
        return self._deliver(SignalingMessageType.ANSWER, sender_id, target_id, message.to_payload())

    def route_candidate(self, sender_id: str, target_id: str, candidate: dict) -> bool:
        """ICE candidate 전달"""
        if self._directory.lookup(sender_id) is None:
            return self._drop(
                SignalingMessageType.ICE_CANDIDATE, sender_id, target_id, "unknown sender"
            )

        message = RelayedIceCandidateMessage(from_socket_id=sender_id, candidate=candidate)
        return self._deliver(
            SignalingMessageType.ICE_CANDIDATE, sender_id, target_id, message.to_payload()
        )

    def broadcast_media_state_change(
        self, sender_id: str, patch: MediaStateChangeMessage
    ) -> int:
        """미디어 상태 병합 후 같은 회의실의 다른 참여자에게 알림"""
        participant = self._directory.update_media_state(sender_id, patch)
        if participant is None:
            return 0

        message = ParticipantMediaChangeMessage(
            socket_id=sender_id,
            media_state=patch.model_dump(by_alias=True, exclude_none=True),
        )
        logger.info(f"Media state change from {sender_id}: {message.media_state}")
        return self._fan_out(participant, message.to_payload())

    def broadcast_screen_share(self, sender_id: str, is_sharing: bool) -> int:
        """화면공유 상태 알림"""
        participant = self._directory.set_screen_sharing(sender_id, is_sharing)
        if participant is None:
            return 0

        message = ParticipantScreenShareMessage(socket_id=sender_id, is_screen_sharing=is_sharing)
        logger.info(f"Screen sharing {'started' if is_sharing else 'stopped'} by {sender_id}")
        return self._fan_out(participant, message.to_payload())

    def _fan_out(self, sender: Participant, payload: dict) -> int:
        delivered = 0
        for member_id in self._directory.get_room_members(sender.room_id):
            if member_id == sender.connection_id:
                continue
            if self._notifier.send(member_id, payload):
                delivered += 1
        return delivered

    def _deliver(
        self,
        kind: SignalingMessageType,
        sender_id: str,
        target_id: str,
        payload: dict,
    ) -> bool:
        if not self._notifier.send(target_id, payload):
            return self._drop(kind, sender_id, target_id, "unknown target")

        logger.debug(f"{kind.value} sent from {sender_id} to {target_id}")
        metrics = get_signaling_metrics()
        if metrics:
            metrics.relayed_messages_total.add(1, {"kind": kind.value})
        return True

    def _drop(
        self,
        kind: SignalingMessageType,
        sender_id: str,
        target_id: str,
        reason: str,
    ) -> bool:
        # 발신자에게 알리지 않는다
        logger.debug(f"Dropped {kind.value} from {sender_id} to {target_id}: {reason}")
        metrics = get_signaling_metrics()
        if metrics:
            metrics.dropped_messages_total.add(1, {"kind": kind.value, "reason": reason})
        return False


def _create_message_relay() -> MessageRelay:
    from meshcall.services.room_service import room_directory
    from meshcall.services.signaling_service import connection_manager

    return MessageRelay(room_directory, connection_manager)


# 싱글톤 인스턴스
message_relay = _create_message_relay()
