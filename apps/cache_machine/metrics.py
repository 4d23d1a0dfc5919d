"""Cache Machine Prometheus 메트릭

복제 계층 모니터링을 위한 핵심 메트릭:
1. 레코드 적용/폐기
2. 변경 발행 결과
3. 이벤트 핸들러 에러
4. Priming 결과와 레이턴시
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry(auto_describe=True)


def start_metrics_server(port: int) -> None:
    """Prometheus /metrics HTTP 서버 시작 (daemon thread)."""
    start_http_server(port, registry=REGISTRY)
    logger.info("metrics_server_started", extra={"port": port})


# ─────────────────────────────────────────────────────────────────────────────
# 1. 레코드 적용 메트릭
# ─────────────────────────────────────────────────────────────────────────────

CACHE_RECORDS_APPLIED = Counter(
    "cache_machine_records_applied_total",
    "Total change records applied to the local store",
    labelnames=["method"],  # create, update, delete, prime
    registry=REGISTRY,
)

CACHE_RECORDS_DROPPED = Counter(
    "cache_machine_records_dropped_total",
    "Total change records not applied",
    labelnames=["reason"],  # malformed, unwatched, stale
    registry=REGISTRY,
)


# ─────────────────────────────────────────────────────────────────────────────
# 2. 발행 메트릭
# ─────────────────────────────────────────────────────────────────────────────

CACHE_PUBLISH_TOTAL = Counter(
    "cache_machine_publish_total",
    "Total bus publish attempts",
    labelnames=["result"],  # success, error
    registry=REGISTRY,
)

CACHE_MUTATIONS_FILTERED = Counter(
    "cache_machine_mutations_filtered_total",
    "Total mutations suppressed by the filter chain",
    registry=REGISTRY,
)


# ─────────────────────────────────────────────────────────────────────────────
# 3. 이벤트 디스패치 메트릭
# ─────────────────────────────────────────────────────────────────────────────

CACHE_EVENTS_DISPATCHED = Counter(
    "cache_machine_events_dispatched_total",
    "Total events routed to the event handler",
    registry=REGISTRY,
)

CACHE_EVENT_HANDLER_ERRORS = Counter(
    "cache_machine_event_handler_errors_total",
    "Total event handler failures",
    registry=REGISTRY,
)


# ─────────────────────────────────────────────────────────────────────────────
# 4. Priming 메트릭
# ─────────────────────────────────────────────────────────────────────────────

CACHE_PRIMING_TOTAL = Counter(
    "cache_machine_priming_total",
    "Total priming handshakes",
    labelnames=["result"],  # primed, timeout
    registry=REGISTRY,
)

CACHE_PRIMING_LATENCY = Histogram(
    "cache_machine_priming_latency_seconds",
    "Time from priming request to applied response",
    registry=REGISTRY,
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)
