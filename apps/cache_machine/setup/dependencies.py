"""Dependency Injection.

Cache machine의 Composition Root입니다.
역할(server/client/local)에 따라 필요한 의존성만 조립합니다.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apps.cache_machine.application.roles.base import CacheMachine
from apps.cache_machine.application.roles.client import CacheClient
from apps.cache_machine.application.roles.local import LocalCache
from apps.cache_machine.application.roles.server import CacheServer
from apps.cache_machine.domain.enums import Role
from apps.cache_machine.domain.exceptions import ConfigurationError
from apps.cache_machine.infrastructure.messaging.kombu_bus import KombuMessageBus
from apps.cache_machine.infrastructure.persistence_sqla.source import automap_source
from apps.cache_machine.setup.config import CacheOptions, Settings, get_settings

if TYPE_CHECKING:
    from apps.cache_machine.application.ports.message_bus import MessageBus
    from apps.cache_machine.application.ports.system_of_record import SystemOfRecord
    from apps.cache_machine.infrastructure.cache.local_store import LocalStore

logger = logging.getLogger(__name__)


def build_cache_machine(
    settings: Settings,
    options: CacheOptions | None = None,
    *,
    bus: MessageBus | None = None,
    source: SystemOfRecord | None = None,
    store: LocalStore | None = None,
) -> CacheMachine:
    """역할에 맞는 cache machine 생성 (start는 호출하지 않음).

    Raises:
        ConfigurationError: 역할 누락, 역할에 필요한 의존성 누락
    """
    options = options or CacheOptions.from_settings(settings)

    if settings.role is None:
        raise ConfigurationError("cache role is required (server, client or local)")
    if settings.role is Role.SERVER:
        return CacheServer(settings, options, bus, source, store)
    if settings.role is Role.CLIENT:
        return CacheClient(settings, options, bus, store)
    return LocalCache(settings, options, source, store)


class Container:
    """의존성 컨테이너.

    설정에서 메시지 버스와 원본 저장소를 만들고 cache machine을 조립합니다.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._bus: KombuMessageBus | None = None
        self._source: SystemOfRecord | None = None
        self._machine: CacheMachine | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    def init(self, options: CacheOptions | None = None) -> CacheMachine:
        """의존성 초기화.

        Raises:
            ConfigurationError: 역할에 필요한 설정 누락
        """
        role = self._settings.role

        # Message bus (server/client)
        if role in (Role.SERVER, Role.CLIENT):
            if not self._settings.broker_url:
                raise ConfigurationError(f"CACHE_BROKER_URL is required for {role.value} role")
            self._bus = KombuMessageBus(self._settings.broker_url)

        # System of record (server/local)
        if role in (Role.SERVER, Role.LOCAL):
            if not self._settings.database_url:
                raise ConfigurationError(f"CACHE_DATABASE_URL is required for {role.value} role")
            self._source = automap_source(self._settings.database_url)

        self._machine = build_cache_machine(
            self._settings,
            options,
            bus=self._bus,
            source=self._source,
        )
        logger.info(
            "container_initialized",
            extra={"role": role.value if role else None},
        )
        return self._machine

    def close(self) -> None:
        """리소스 정리."""
        if self._machine:
            self._machine.stop()
        if self._bus:
            self._bus.close()

    @property
    def machine(self) -> CacheMachine:
        """조립된 cache machine."""
        if not self._machine:
            raise RuntimeError("Container not initialized")
        return self._machine
