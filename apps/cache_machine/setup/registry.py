"""Cache Registry.

서비스 이름 → cache machine 인스턴스 조회 테이블입니다.
한 프로세스에서 여러 서비스 식별자의 캐시를 운용할 때 사용합니다.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from apps.cache_machine.domain.exceptions import CacheNotFoundError
from apps.cache_machine.setup.dependencies import build_cache_machine

if TYPE_CHECKING:
    from apps.cache_machine.application.roles.base import CacheMachine
    from apps.cache_machine.setup.config import CacheOptions, Settings

logger = logging.getLogger(__name__)


class CacheRegistry:
    """프로세스 범위 cache 레지스트리.

    Usage:
        registry = CacheRegistry()
        registry.create(settings, options, bus=bus)
        registry.get("orders").get("Customer", 1)
    """

    def __init__(self) -> None:
        self._machines: dict[str, CacheMachine] = {}
        self._lock = threading.Lock()

    def register(self, machine: CacheMachine) -> CacheMachine:
        """등록. 같은 이름이 있으면 기존 인스턴스를 멈추고 교체."""
        with self._lock:
            previous = self._machines.get(machine.service_name)
            self._machines[machine.service_name] = machine
        if previous is not None and previous is not machine:
            logger.warning("cache_replaced", extra={"service_name": machine.service_name})
            previous.stop()
        return machine

    def create(
        self,
        settings: Settings,
        options: CacheOptions | None = None,
        *,
        start: bool = True,
        **dependencies: Any,
    ) -> CacheMachine:
        """생성 후 등록, 기본적으로 start까지 호출."""
        machine = self.register(build_cache_machine(settings, options, **dependencies))
        if start:
            machine.start()
        return machine

    def get(self, service_name: str) -> CacheMachine:
        """Raises:
        CacheNotFoundError: 등록되지 않은 서비스
        """
        with self._lock:
            machine = self._machines.get(service_name)
        if machine is None:
            raise CacheNotFoundError(service_name)
        return machine

    def __contains__(self, service_name: object) -> bool:
        return service_name in self._machines

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._machines)

    def remove(self, service_name: str) -> None:
        """등록 해제 후 stop. 없으면 no-op."""
        with self._lock:
            machine = self._machines.pop(service_name, None)
        if machine is not None:
            machine.stop()

    def stop_all(self) -> None:
        with self._lock:
            machines = list(self._machines.values())
            self._machines.clear()
        for machine in machines:
            machine.stop()
