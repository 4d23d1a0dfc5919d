"""Local Cache.

메시지 버스 없이 한 프로세스에서 서버/클라이언트 역할을 모두 수행합니다.
emit과 priming 응답은 ApplyEngine으로 바로 연결되고, priming은 저장소를 직접 조회합니다.
단일 프로세스 배포나 테스트에 사용합니다.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Iterable

from apps.cache_machine.application.ports.system_of_record import SystemOfRecord
from apps.cache_machine.application.replication.priming import PrimingResponder
from apps.cache_machine.application.replication.publisher import ChangePublisher
from apps.cache_machine.application.roles.base import CacheMachine
from apps.cache_machine.domain.enums import Role
from apps.cache_machine.domain.exceptions import ConfigurationError
from apps.cache_machine.domain.records import ChangeRecord, PrimingRequest, PrimingResponse

if TYPE_CHECKING:
    from apps.cache_machine.infrastructure.cache.local_store import LocalStore
    from apps.cache_machine.setup.config import CacheOptions, Settings

logger = logging.getLogger(__name__)


class LocalCache(CacheMachine):
    """로컬 역할."""

    role = Role.LOCAL

    def __init__(
        self,
        settings: Settings,
        options: CacheOptions,
        source: SystemOfRecord | None,
        store: LocalStore | None = None,
    ) -> None:
        if source is None:
            raise ConfigurationError("system of record is required for local cache")
        super().__init__(settings, options, store)

        self._source = source
        self._models_watched: set[str] = set()
        self._hooks_lock = threading.Lock()
        self.publisher = ChangePublisher(
            emit=self.emit,
            filters=options.filters,
            granularity=settings.topic_granularity,
            source=source,
            versioned=settings.versioned_updates,
        )
        self.responder = PrimingResponder(source, self.reply, ensure_watched=self.watch_model)

    def start(self) -> None:
        """버킷 할당, 훅 설치, 동기 priming 후 on_ready(None, snapshot)."""
        specs = self._declare_watch()
        records = self.responder.handle_request(PrimingRequest(models=specs).to_dict())
        logger.info(
            "local_cache_primed",
            extra={"service_name": self.service_name, "count": len(records)},
        )
        self._mark_ready(None, self.store.snapshot())

    def stop(self) -> None:
        self._source.clear_observers()
        super().stop()

    def watch_model(self, model_name: str) -> None:
        """모델에 변경 훅 설치 (모델당 한 번)."""
        with self._hooks_lock:
            if model_name in self._models_watched or not self._source.has_model(model_name):
                return
            self._source.on_after_mutation(model_name, self.publisher.publish)
            self._source.on_before_delete(model_name, self.publisher.publish_deletion)
            self._models_watched.add(model_name)

    def emit(self, records: Iterable[ChangeRecord | dict[str, Any]], topic: str | None = None) -> None:
        """프로세스 내 발행: 바로 적용 후 이벤트 라우팅. topic은 무시."""
        payload = [r.to_dict() if isinstance(r, ChangeRecord) else r for r in records]
        applied = self.engine.apply_batch(payload)
        self.dispatcher.dispatch_all(applied)

    def reply(self, payload: Any, topic: str | None = None) -> None:
        """priming 응답을 프로세스 안에서 바로 적용."""
        self.emit(PrimingResponse.from_payload(payload).records)
