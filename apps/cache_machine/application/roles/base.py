"""Cache Machine Base.

세 역할(server/client/local)이 공유하는 구성 요소입니다.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable

from apps.cache_machine.application.replication.apply import ApplyEngine
from apps.cache_machine.application.replication.dispatcher import EventDispatcher
from apps.cache_machine.domain.enums import Role, WatchMode
from apps.cache_machine.domain.naming import Naming
from apps.cache_machine.domain.records import WatchSpec
from apps.cache_machine.infrastructure.cache.local_store import LocalStore

if TYPE_CHECKING:
    from apps.cache_machine.setup.config import CacheOptions, Settings

logger = logging.getLogger(__name__)


class CacheMachine(ABC):
    """Cache machine 공통 베이스.

    로컬 저장소 조회 API를 함께 제공합니다.

    Usage:
        machine.start()
        machine.wait_until_ready(timeout=10)
        machine.get("Customer", 1)
    """

    role: Role

    def __init__(
        self,
        settings: Settings,
        options: CacheOptions,
        store: LocalStore | None = None,
    ) -> None:
        self.settings = settings
        self.options = options
        self.naming = Naming(settings.environment, settings.service_name)
        self.store = store or LocalStore()
        self.engine = ApplyEngine(self.store)
        self.dispatcher = EventDispatcher(
            options.events,
            options.event_handler,
            options.event_error_handler,
        )
        self._ready = threading.Event()
        self._ready_ok = False

    @property
    def service_name(self) -> str:
        return self.settings.service_name

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set() and self._ready_ok

    @abstractmethod
    def start(self) -> None:
        """역할 초기화 (구독, 훅 설치, priming)."""

    def stop(self) -> None:
        """리소스 정리."""
        logger.info(
            "cache_machine_stopped",
            extra={"service_name": self.service_name, "role": self.role.value},
        )

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        """준비 완료(또는 실패)까지 대기.

        Returns:
            준비 완료면 True
        """
        self._ready.wait(timeout)
        return self._ready_ok

    # ─────────────────────────────────────────────────────────────
    # 조회 (LocalStore 위임)
    # ─────────────────────────────────────────────────────────────

    def get(self, model_name: str, model_id: Any) -> dict[str, Any] | None:
        return self.store.get(model_name, model_id)

    def find_one(self, model_name: str, key: str, value: Any) -> dict[str, Any] | None:
        return self.store.find_one(model_name, key, value)

    def find_all(self, model_name: str, key: str, value: Any) -> list[dict[str, Any]]:
        return self.store.find_all(model_name, key, value)

    def filter(
        self, model_name: str, predicate: Callable[[dict[str, Any]], bool]
    ) -> list[dict[str, Any]]:
        return self.store.filter(model_name, predicate)

    def snapshot(self) -> dict[str, dict[Any, dict[str, Any]]]:
        return self.store.snapshot()

    # ─────────────────────────────────────────────────────────────
    # 공통 헬퍼
    # ─────────────────────────────────────────────────────────────

    def _declare_watch(self) -> dict[str, WatchSpec]:
        """WatchSpec 계산 후 cache 모델에만 버킷 할당."""
        specs = self.options.watch_specs()
        for spec in specs.values():
            if spec.mode is WatchMode.CACHE:
                self.store.watch(spec.model_name)
        logger.info(
            "models_watched",
            extra={
                "service_name": self.service_name,
                "cache": [s.model_name for s in specs.values() if s.mode is WatchMode.CACHE],
                "event": [s.model_name for s in specs.values() if s.mode is WatchMode.EVENT],
            },
        )
        return specs

    def _mark_ready(self, error: Exception | None, result: Any) -> None:
        """준비 상태 기록 후 on_ready 호출."""
        self._ready_ok = error is None
        try:
            if self.options.on_ready is not None:
                self.options.on_ready(error, result)
        except Exception:
            logger.exception("on_ready_callback_failed", extra={"service_name": self.service_name})
        finally:
            self._ready.set()
