"""OpenTelemetry 계측 설정

시그널링 서버와 클라이언트가 공통으로 사용하는 OTel 초기화 로직.
초기화하지 않으면 get_signaling_metrics()가 None을 반환하므로
호출자는 메트릭 기록을 건너뛴다.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.semconv.resource import ResourceAttributes

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


def init_telemetry(
    service_name: str,
    service_version: str,
    otlp_endpoint: str,
    environment: str = "development",
) -> metrics.Meter:
    """OpenTelemetry 초기화

    Args:
        service_name: 서비스 이름 (예: "meshcall-signaling")
        service_version: 서비스 버전
        otlp_endpoint: OTLP 수신 엔드포인트
        environment: 배포 환경 이름

    Returns:
        Meter 인스턴스
    """
    resource = Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: service_name,
            ResourceAttributes.SERVICE_VERSION: service_version,
            ResourceAttributes.DEPLOYMENT_ENVIRONMENT: environment,
        }
    )

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
        export_interval_millis=10000,  # 10초마다 export
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)

    meter = metrics.get_meter(service_name, service_version)

    logger.info(
        "Telemetry initialized: service=%s, endpoint=%s",
        service_name,
        otlp_endpoint,
    )

    return meter


def instrument_fastapi(app: FastAPI) -> None:
    """FastAPI 자동 계측"""
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI instrumentation enabled")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


class SignalingMetrics:
    """시그널링 커스텀 메트릭"""

    def __init__(self, meter: metrics.Meter):
        self.meter = meter
        self._init_room_metrics()
        self._init_relay_metrics()
        self._init_negotiation_metrics()

    def _init_room_metrics(self) -> None:
        """회의실/참여자 메트릭"""
        self.active_rooms = self.meter.create_up_down_counter(
            name="meshcall_active_rooms",
            description="현재 활성 회의실 수",
        )
        self.active_participants = self.meter.create_up_down_counter(
            name="meshcall_active_participants",
            description="현재 입장한 참여자 수",
        )
        self.room_joins_total = self.meter.create_counter(
            name="meshcall_room_joins_total",
            description="입장 시도 결과 (joined/room_full)",
        )

    def _init_relay_metrics(self) -> None:
        """메시지 중계 메트릭"""
        self.relayed_messages_total = self.meter.create_counter(
            name="meshcall_relayed_messages_total",
            description="종류별 중계된 메시지 수",
        )
        self.dropped_messages_total = self.meter.create_counter(
            name="meshcall_dropped_messages_total",
            description="대상/발신자를 찾지 못해 버려진 메시지 수",
        )

    def _init_negotiation_metrics(self) -> None:
        """클라이언트 협상 메트릭"""
        self.candidates_queued_total = self.meter.create_counter(
            name="meshcall_candidates_queued_total",
            description="remote description 이전에 큐잉된 ICE candidate 수",
        )
        self.glare_total = self.meter.create_counter(
            name="meshcall_glare_total",
            description="glare 발생 수 (rollback/ignore)",
        )


# ===========================================
# 싱글톤 인스턴스 및 접근자
# ===========================================

_signaling_metrics: SignalingMetrics | None = None
_initialized: bool = False


def is_telemetry_initialized() -> bool:
    """Telemetry 초기화 여부 확인"""
    return _initialized


def get_signaling_metrics() -> SignalingMetrics | None:
    """시그널링 메트릭 인스턴스 반환 (초기화 안 된 경우 None)"""
    return _signaling_metrics


def setup_telemetry(
    service_name: str,
    service_version: str,
    otlp_endpoint: str,
    environment: str = "development",
) -> None:
    """전역 telemetry 설정 (애플리케이션 시작 시 호출)"""
    global _signaling_metrics, _initialized

    if _initialized:
        logger.warning("Telemetry already initialized, skipping")
        return

    meter = init_telemetry(service_name, service_version, otlp_endpoint, environment)
    _signaling_metrics = SignalingMetrics(meter)
    _initialized = True
