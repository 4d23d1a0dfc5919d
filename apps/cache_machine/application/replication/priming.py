"""Priming Protocol.

새 복제본을 일관된 초기 상태로 채우는 요청/응답 핸드셰이크입니다.

Flow:
    1. 클라이언트: 응답 채널 구독 후 start 요청 발행 (요청마다 새 requestId)
       {"responseChannel": ..., "requestId": ..., "models": {name: {"type": "cache"|"event", "fields": [...]}}}
    2. 서버: cache 모드 모델을 저장소에서 조회 (field projection 적용)
    3. 서버: 레코드마다 methodName=prime인 ChangeRecord 생성, requestId와 함께 하나의 배치로 응답
    4. 클라이언트: 대기 중인 requestId의 배치만 ApplyEngine으로 적용 후 PRIMED, on_ready(None, snapshot)

클라이언트 상태 머신:
    IDLE → AWAITING_PRIME → PRIMED | FAILED (timeout)

prime은 write-if-absent이므로 재priming은 멱등입니다.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable, Optional

from apps.cache_machine.application.ports.system_of_record import SystemOfRecord
from apps.cache_machine.application.replication.apply import ApplyEngine
from apps.cache_machine.application.replication.dispatcher import EventDispatcher
from apps.cache_machine.domain.enums import MethodName, PrimingState, WatchMode
from apps.cache_machine.domain.exceptions import MalformedRecordError, PrimingTimeoutError
from apps.cache_machine.domain.naming import PRIME_CACHE_TOPIC
from apps.cache_machine.domain.records import ChangeRecord, PrimingRequest, PrimingResponse, WatchSpec
from apps.cache_machine.metrics import CACHE_PRIMING_LATENCY, CACHE_PRIMING_TOTAL

logger = logging.getLogger(__name__)

ReadyCallback = Callable[[Optional[Exception], Any], None]


class PrimingResponder:
    """서버 측 priming 요청 처리기."""

    def __init__(
        self,
        source: SystemOfRecord,
        reply: Callable[[Any, str], Any],
        ensure_watched: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize.

        Args:
            source: 원본 저장소
            reply: reply(payload, logical_topic) 응답 발행 함수
            ensure_watched: 요청된 모델에 발행 훅을 설치하는 함수
        """
        self._source = source
        self._reply = reply
        self._ensure_watched = ensure_watched

    def collect(self, request: PrimingRequest) -> list[ChangeRecord]:
        """요청된 cache 모델의 현재 상태를 prime 레코드로 변환.

        모델은 한 번에 하나씩 순서대로 조회합니다.
        """
        records: list[ChangeRecord] = []
        for model_name, spec in request.models.items():
            if self._ensure_watched is not None:
                self._ensure_watched(model_name)

            if spec.mode is not WatchMode.CACHE:
                continue
            if not self._source.has_model(model_name):
                logger.warning("priming_model_unknown", extra={"model_name": model_name})
                continue

            try:
                rows = self._source.find(model_name, fields=list(spec.fields) or None)
            except Exception:
                logger.exception("priming_query_failed", extra={"model_name": model_name})
                continue

            for row in rows:
                model_id = row.get("id")
                if model_id in (None, ""):
                    logger.warning(
                        "priming_row_without_id",
                        extra={"model_name": model_name},
                    )
                    continue
                records.append(
                    ChangeRecord(
                        model_name=model_name,
                        method_name=MethodName.PRIME,
                        model_id=model_id,
                        data=row,
                    )
                )
        return records

    def handle_request(self, payload: Any) -> list[ChangeRecord]:
        """start 요청 수신 → 조회 → 응답 채널로 배치 발행.

        매칭되는 모델이 없어도 빈 배치로 응답합니다.
        """
        try:
            request = PrimingRequest.from_dict(payload)
        except MalformedRecordError as e:
            logger.error(
                "priming_request_malformed",
                extra={"reason": e.reason, "payload": repr(payload)},
            )
            return []

        records = self.collect(request)
        channel = request.response_channel or PRIME_CACHE_TOPIC
        response = PrimingResponse([r.to_dict() for r in records], request.request_id)
        self._reply(response.to_payload(), channel)
        logger.info(
            "priming_response_sent",
            extra={
                "response_channel": channel,
                "request_id": request.request_id,
                "models": list(request.models),
                "count": len(records),
            },
        )
        return records


class PrimingClient:
    """클라이언트 측 priming 상태 머신.

    응답 배치는 구독 스레드에서, timeout은 Timer 스레드에서 들어오므로
    상태 전이는 lock 안에서만 일어납니다.
    """

    def __init__(
        self,
        service_name: str,
        engine: ApplyEngine,
        send_request: Callable[[PrimingRequest], Any],
        timeout: float,
        on_ready: ReadyCallback | None = None,
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        """Initialize.

        Args:
            service_name: 서비스 식별자 (timeout 에러 메시지용)
            engine: 응답 배치를 적용할 ApplyEngine
            send_request: start 요청 발행 함수
            timeout: 응답 대기 시간 (초)
            on_ready: on_ready(error, snapshot) 준비 완료 콜백
            dispatcher: 적용된 레코드를 라우팅할 이벤트 디스패처
        """
        self._service_name = service_name
        self._engine = engine
        self._send_request = send_request
        self._timeout = timeout
        self._on_ready = on_ready
        self._dispatcher = dispatcher

        self._state = PrimingState.IDLE
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._request_id: str | None = None
        self._started_at = 0.0

    @property
    def state(self) -> PrimingState:
        return self._state

    @property
    def request_id(self) -> str | None:
        """마지막으로 보낸 요청 id."""
        return self._request_id

    def start(self, models: dict[str, WatchSpec], response_channel: str | None) -> None:
        """start 요청 발행 후 AWAITING_PRIME으로 전이. 재priming에도 사용."""
        with self._lock:
            self._cancel_timer()
            self._generation += 1
            generation = self._generation
            request_id = uuid.uuid4().hex
            self._request_id = request_id
            self._state = PrimingState.AWAITING_PRIME
            self._done.clear()
            self._started_at = time.perf_counter()
            self._timer = threading.Timer(self._timeout, self._on_timeout, args=(generation,))
            self._timer.daemon = True
            self._timer.start()

        request = PrimingRequest(
            models=dict(models),
            response_channel=response_channel,
            request_id=request_id,
        )
        logger.info(
            "priming_requested",
            extra={
                "service_name": self._service_name,
                "models": list(models),
                "response_channel": response_channel,
                "request_id": request_id,
            },
        )
        # 발행 실패는 transport 계층에서 로그됨. timeout이 최종 실패를 보고합니다.
        self._send_request(request)

    def handle_response(self, payload: Any) -> None:
        """응답 배치 적용.

        마지막 요청의 requestId가 실린 배치만 적용합니다. 다른 인스턴스의 응답이나
        이전 요청의 응답은 버립니다. timeout 이후 도착한 배치는 적용하되
        on_ready는 다시 부르지 않습니다.
        """
        try:
            response = PrimingResponse.from_payload(payload)
        except MalformedRecordError as e:
            logger.error("priming_response_malformed", extra={"reason": e.reason})
            return

        expected = self._request_id
        if expected is None or response.request_id != expected:
            logger.info(
                "priming_response_ignored",
                extra={
                    "service_name": self._service_name,
                    "request_id": response.request_id,
                    "expected": expected,
                },
            )
            return

        records = self._engine.apply_batch(response.records)
        if self._dispatcher is not None:
            self._dispatcher.dispatch_all(records)

        with self._lock:
            if self._state is not PrimingState.AWAITING_PRIME or response.request_id != self._request_id:
                logger.info(
                    "priming_response_late",
                    extra={"state": self._state.value, "count": len(records)},
                )
                return
            self._cancel_timer()
            self._state = PrimingState.PRIMED
            elapsed = time.perf_counter() - self._started_at

        CACHE_PRIMING_TOTAL.labels(result="primed").inc()
        CACHE_PRIMING_LATENCY.observe(elapsed)
        logger.info(
            "priming_completed",
            extra={"service_name": self._service_name, "count": len(records)},
        )
        self._notify(None, self._engine.store.snapshot())
        self._done.set()

    def wait(self, timeout: float | None = None) -> bool:
        """PRIMED 또는 FAILED가 될 때까지 대기.

        Returns:
            PRIMED이면 True
        """
        self._done.wait(timeout)
        return self._state is PrimingState.PRIMED

    def cancel(self) -> None:
        """대기 중인 timeout 해제."""
        with self._lock:
            self._cancel_timer()

    def _on_timeout(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state is not PrimingState.AWAITING_PRIME:
                return
            self._state = PrimingState.FAILED
            self._timer = None

        CACHE_PRIMING_TOTAL.labels(result="timeout").inc()
        error = PrimingTimeoutError(self._service_name, self._timeout)
        logger.error(
            "priming_timeout",
            extra={"service_name": self._service_name, "timeout": self._timeout},
        )
        self._notify(error, None)
        self._done.set()

    def _notify(self, error: Exception | None, snapshot: Any) -> None:
        if self._on_ready is None:
            return
        try:
            self._on_ready(error, snapshot)
        except Exception:
            logger.exception("on_ready_callback_failed")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
