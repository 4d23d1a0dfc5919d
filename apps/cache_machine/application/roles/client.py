"""Cache Client.

복제본을 유지하고 변경 이벤트에 반응합니다.

Boot sequence (순서 고정):
    1. WatchSpec 계산, cache 모델 버킷 할당
    2. 모델 토픽 구독 (한 번에 하나씩)
    3. priming 응답 채널 구독 (인스턴스마다 고유한 auto-delete 구독)
    4. start 요청 발행 → PrimingClient가 응답/timeout 처리
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from apps.cache_machine.application.ports.message_bus import MessageBus, Subscription
from apps.cache_machine.application.replication.priming import PrimingClient
from apps.cache_machine.application.roles.base import CacheMachine
from apps.cache_machine.domain.enums import MethodName, PrimingState, Role, TopicGranularity, WatchMode
from apps.cache_machine.domain.exceptions import ConfigurationError
from apps.cache_machine.domain.naming import ASK_PRIME_CACHE_TOPIC, MODEL_TOPIC, model_topic
from apps.cache_machine.domain.records import PrimingRequest, WatchSpec

if TYPE_CHECKING:
    from apps.cache_machine.infrastructure.cache.local_store import LocalStore
    from apps.cache_machine.setup.config import CacheOptions, Settings

logger = logging.getLogger(__name__)

# cache 모델이 실시간으로 받는 변경 (prime은 응답 채널로만 옴)
LIVE_METHODS = (MethodName.CREATE, MethodName.UPDATE, MethodName.DELETE)


class CacheClient(CacheMachine):
    """클라이언트 역할."""

    role = Role.CLIENT

    def __init__(
        self,
        settings: Settings,
        options: CacheOptions,
        bus: MessageBus | None,
        store: LocalStore | None = None,
    ) -> None:
        if bus is None:
            raise ConfigurationError("message bus is required for cache client")
        super().__init__(settings, options, store)

        self._bus = bus
        self._subscriptions: list[Subscription] = []
        self._specs: dict[str, WatchSpec] = {}
        self._response_channel = self.naming.response_channel()
        self.priming = PrimingClient(
            service_name=settings.service_name,
            engine=self.engine,
            send_request=self._send_priming_request,
            timeout=settings.prime_timeout_seconds,
            on_ready=self._mark_ready,
            dispatcher=self.dispatcher,
        )

    @property
    def state(self) -> PrimingState:
        return self.priming.state

    @property
    def response_channel(self) -> str:
        return self._response_channel

    def start(self) -> None:
        self._specs = self._declare_watch()

        try:
            for topic_name in self.model_topics(self._specs):
                self._subscribe(
                    topic_name,
                    self.naming.unique_subscription(topic_name),
                    self.handle_model_message,
                )
            self._subscribe(
                self._response_channel,
                self.naming.unique_subscription(self._response_channel),
                self.priming.handle_response,
            )
        except Exception as e:
            logger.exception("client_subscription_failed", extra={"service_name": self.service_name})
            self._mark_ready(e, None)
            return

        self.priming.start(self._specs, self._response_channel)

    def reprime(self) -> None:
        """재연결 등으로 priming 재실행. prime은 write-if-absent라 멱등."""
        self._ready.clear()
        self.priming.start(self._specs, self._response_channel)

    def stop(self) -> None:
        self.priming.cancel()
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
        super().stop()

    def model_topics(self, specs: dict[str, WatchSpec]) -> list[str]:
        """구독해야 할 논리 모델 토픽 (순서 유지, 중복 제거)."""
        granularity = self.settings.topic_granularity
        if granularity is TopicGranularity.SHARED:
            return [MODEL_TOPIC] if specs else []

        topics: list[str] = []
        for spec in specs.values():
            if spec.mode is WatchMode.CACHE:
                methods = [m.value for m in LIVE_METHODS]
                methods += [m for m in self.options.event_methods(spec.model_name) if m not in methods]
            else:
                methods = self.options.event_methods(spec.model_name)
            for method in methods:
                name = model_topic(spec.model_name, method, granularity)
                if name not in topics:
                    topics.append(name)
        return topics

    def handle_model_message(self, payload: Any) -> None:
        """실시간 변경 수신: 적용 후 이벤트 라우팅."""
        records = self.engine.apply_batch(payload)
        self.dispatcher.dispatch_all(records)

    def _subscribe(
        self,
        topic_name: str,
        subscription_name: str,
        handler: Callable[[Any], None],
    ) -> None:
        topic = self._bus.topic(self.naming.topic(topic_name))
        subscription = topic.subscribe(subscription_name)
        subscription.on_error(self._on_subscription_error)
        subscription.on_message(handler)
        self._subscriptions.append(subscription)
        logger.info(
            "client_subscribed",
            extra={"topic": topic.name, "subscription": subscription.name},
        )

    def _send_priming_request(self, request: PrimingRequest) -> bool:
        topic = self._bus.topic(self.naming.topic(ASK_PRIME_CACHE_TOPIC))
        return topic.publish(request.to_dict())

    def _on_subscription_error(self, error: Exception) -> None:
        logger.error(
            "client_subscription_error",
            extra={"service_name": self.service_name, "error": str(error)},
        )
