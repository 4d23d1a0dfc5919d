"""Cache Server.

원본 저장소를 소유하고 변경을 브로드캐스트합니다.

Flow:
    저장소 변경 훅 ──▶ ChangePublisher (필터) ──▶ emit ──▶ 모델 토픽
    start-cache-client 토픽 ──▶ PrimingResponder ──▶ 응답 채널
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Iterable

from apps.cache_machine.application.ports.message_bus import MessageBus, Subscription
from apps.cache_machine.application.ports.system_of_record import SystemOfRecord
from apps.cache_machine.application.replication.priming import PrimingResponder
from apps.cache_machine.application.replication.publisher import ChangePublisher
from apps.cache_machine.application.roles.base import CacheMachine
from apps.cache_machine.domain.enums import Role
from apps.cache_machine.domain.exceptions import ConfigurationError
from apps.cache_machine.domain.naming import ASK_PRIME_CACHE_TOPIC
from apps.cache_machine.domain.records import ChangeRecord

if TYPE_CHECKING:
    from apps.cache_machine.infrastructure.cache.local_store import LocalStore
    from apps.cache_machine.setup.config import CacheOptions, Settings

logger = logging.getLogger(__name__)


class CacheServer(CacheMachine):
    """서버 역할."""

    role = Role.SERVER

    def __init__(
        self,
        settings: Settings,
        options: CacheOptions,
        bus: MessageBus | None,
        source: SystemOfRecord | None,
        store: LocalStore | None = None,
    ) -> None:
        if bus is None:
            raise ConfigurationError("message bus is required for cache server")
        if source is None:
            raise ConfigurationError("system of record is required for cache server")
        super().__init__(settings, options, store)

        self._bus = bus
        self._source = source
        self._models_watched: set[str] = set()
        self._hooks_lock = threading.Lock()
        self._subscription: Subscription | None = None

        self.publisher = ChangePublisher(
            emit=self.emit,
            filters=options.filters,
            granularity=settings.topic_granularity,
            source=source,
            versioned=settings.versioned_updates,
        )
        self.responder = PrimingResponder(source, self.reply, ensure_watched=self.watch_model)

    @property
    def models_watched(self) -> list[str]:
        return sorted(self._models_watched)

    def start(self) -> None:
        """훅 설치 후 priming 요청 구독. 준비되면 on_ready(None, True)."""
        for model_name in self.settings.served_models or self._source.model_names():
            self.watch_model(model_name)

        topic = self._bus.topic(self.naming.topic(ASK_PRIME_CACHE_TOPIC))
        try:
            subscription = topic.subscribe(self.naming.unique_subscription(ASK_PRIME_CACHE_TOPIC))
            subscription.on_error(self._on_subscription_error)
            subscription.on_message(self.responder.handle_request)
        except Exception as e:
            logger.exception(
                "priming_subscription_failed",
                extra={"service_name": self.service_name, "topic": topic.name},
            )
            self._mark_ready(e, None)
            return

        self._subscription = subscription
        logger.info(
            "cache_server_ready",
            extra={
                "service_name": self.service_name,
                "models": self.models_watched,
                "subscription": subscription.name,
            },
        )
        self._mark_ready(None, True)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self._source.clear_observers()
        super().stop()

    def watch_model(self, model_name: str) -> None:
        """모델에 발행 훅 설치 (모델당 한 번)."""
        with self._hooks_lock:
            if model_name in self._models_watched:
                return
            if not self._source.has_model(model_name):
                logger.warning("model_not_served", extra={"model_name": model_name})
                return
            self._source.on_after_mutation(model_name, self.publisher.publish)
            self._source.on_before_delete(model_name, self.publisher.publish_deletion)
            self._models_watched.add(model_name)
        logger.info("model_hooks_installed", extra={"model_name": model_name})

    def emit(self, records: Iterable[ChangeRecord | dict[str, Any]], topic: str) -> bool:
        """레코드 배치를 논리 토픽으로 발행 (수동 발행에도 사용).

        Returns:
            발행 성공 여부 (실패는 transport 계층에서 로그)

        Raises:
            ValueError: topic 누락
        """
        if not topic:
            raise ValueError("Publishing message requires topic name")
        payload = [r.to_dict() if isinstance(r, ChangeRecord) else r for r in records]
        return self.reply(payload, topic)

    def reply(self, payload: Any, topic: str) -> bool:
        """이미 직렬화된 페이로드를 논리 토픽으로 발행 (priming 응답)."""
        return self._bus.topic(self.naming.topic(topic)).publish(payload)

    def _on_subscription_error(self, error: Exception) -> None:
        logger.error(
            "priming_subscription_error",
            extra={"service_name": self.service_name, "error": str(error)},
        )
