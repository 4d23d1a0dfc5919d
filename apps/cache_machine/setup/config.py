"""Cache Machine 설정.

환경 변수 (prefix: CACHE_):
- CACHE_ROLE: server / client / local
- CACHE_SERVICE_NAME: 서비스 식별자 (캐시 레지스트리 키, 구독 이름에 사용)
- CACHE_ENVIRONMENT: 환경 태그 (토픽 이름 suffix). 필수
- CACHE_BROKER_URL: 메시지 브로커 URL (server/client)
- CACHE_TOPIC_GRANULARITY: shared / model / model_method (default: model)
- CACHE_PRIME_TIMEOUT_SECONDS: priming 응답 대기 시간 (default: 30)
- CACHE_VERSIONED_UPDATES: update에 version을 찍고 오래된 update를 버림 (default: false)
- CACHE_SERVED_MODELS: 서버가 발행할 모델 (쉼표 구분, 비우면 저장소의 전체 모델)
- CACHE_WATCH: 클라이언트 감시 모델 (예: "Customer,Order:event")
- CACHE_EVENTS: 이벤트 감시 목록 (예: "Order.update,Order.delete")
- CACHE_DATABASE_URL: 원본 저장소 URL (server/local 실행 시)
- CACHE_LOG_LEVEL: 로그 레벨 (default: INFO)
- CACHE_METRICS_PORT: Prometheus 포트 (비우면 비활성)

콜백/필터처럼 환경 변수로 표현할 수 없는 값은 CacheOptions로 전달합니다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from apps.cache_machine.domain.enums import Role, TopicGranularity, WatchMode
from apps.cache_machine.domain.exceptions import ConfigurationError
from apps.cache_machine.domain.records import WatchSpec

ReadyCallback = Callable[[Optional[Exception], Any], None]


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _watch_mode(value: Any) -> WatchMode:
    try:
        return WatchMode(value)
    except ValueError:
        raise ConfigurationError(f"unknown watch mode '{value}' (cache or event)") from None


class Settings(BaseSettings):
    """Cache Machine 설정."""

    model_config = SettingsConfigDict(env_prefix="CACHE_", env_file=".env", extra="ignore")

    # Service Info
    role: Optional[Role] = None
    service_name: str
    service_version: str = "1.0.0"
    environment: str

    # Transport
    broker_url: Optional[str] = None
    topic_granularity: TopicGranularity = TopicGranularity.MODEL

    # Priming
    prime_timeout_seconds: float = 30.0

    # update 재정렬 보호 (opt-in)
    versioned_updates: bool = False

    # 쉼표 구분 문자열 → 리스트 (property)
    served_models_str: str = Field(
        "",
        validation_alias=AliasChoices("CACHE_SERVED_MODELS", "served_models_str"),
    )
    watch_str: str = Field(
        "",
        validation_alias=AliasChoices("CACHE_WATCH", "watch_str"),
    )
    events_str: str = Field(
        "",
        validation_alias=AliasChoices("CACHE_EVENTS", "events_str"),
    )

    # System of record
    database_url: Optional[str] = None

    # 로깅 / 메트릭
    log_level: str = "INFO"
    metrics_port: Optional[int] = None

    @field_validator("service_name", "environment")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("prime_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @property
    def served_models(self) -> list[str]:
        """서버가 발행할 모델 리스트."""
        return _split(self.served_models_str)

    @property
    def watch_list(self) -> list[WatchSpec]:
        """CACHE_WATCH 파싱. "Model" 또는 "Model:event"."""
        specs = []
        for item in _split(self.watch_str):
            name, _, mode = item.partition(":")
            specs.append(WatchSpec(model_name=name, mode=_watch_mode(mode or WatchMode.CACHE.value)))
        return specs

    @property
    def events(self) -> list[str]:
        return _split(self.events_str)


def load_settings(**overrides: Any) -> Settings:
    """설정 로드. 검증 실패는 ConfigurationError로 변환.

    Raises:
        ConfigurationError: 필수 값 누락 또는 잘못된 값
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"invalid cache configuration: {e}") from e
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


@lru_cache
def get_settings() -> Settings:
    """설정 싱글톤."""
    return load_settings()


@dataclass
class CacheOptions:
    """콜백/필터 등 코드로만 전달 가능한 설정.

    생성 시점에 한 번 검증합니다.

    Attributes:
        watch_list: 감시 모델 (WatchSpec 또는 모델 이름)
        filters: filter(model_name, method_name, instance, ctx) → bool 목록
        on_ready: on_ready(error, result) 준비 완료 콜백
        events: "Model.method" 이벤트 목록
        event_handler: handler(model_name, method_name, model_id, data, callback)
        event_error_handler: 이벤트 핸들러 에러 콜백
    """

    watch_list: list[Any] = field(default_factory=list)
    filters: list[Any] = field(default_factory=list)
    on_ready: Optional[ReadyCallback] = None
    events: list[str] = field(default_factory=list)
    event_handler: Optional[Callable[..., None]] = None
    event_error_handler: Optional[Callable[[Exception], None]] = None

    def __post_init__(self) -> None:
        self.watch_list = [self._to_spec(item) for item in self.watch_list]

        if self.on_ready is not None and not callable(self.on_ready):
            raise ConfigurationError("on_ready must be callable")
        if self.events and self.event_handler is None:
            raise ConfigurationError("event_handler is required if including events")
        if self.event_handler is not None and not callable(self.event_handler):
            raise ConfigurationError("event_handler must be callable")
        if self.event_error_handler is not None and not callable(self.event_error_handler):
            raise ConfigurationError("event_error_handler must be callable")
        for event in self.events:
            model_name, sep, method_name = event.partition(".")
            if not model_name or not sep or not method_name:
                raise ConfigurationError(f"event '{event}' must look like 'Model.method'")

    @staticmethod
    def _to_spec(item: Any) -> WatchSpec:
        if isinstance(item, WatchSpec):
            return item
        if isinstance(item, str):
            return WatchSpec(model_name=item)
        if isinstance(item, dict):
            mode = item.get("mode") or item.get("type") or WatchMode.CACHE.value
            return WatchSpec(
                model_name=item.get("model_name") or item.get("modelName") or "",
                mode=_watch_mode(mode),
                fields=tuple(item.get("fields") or ()),
            )
        raise ConfigurationError(f"invalid watch list entry: {item!r}")

    def watch_specs(self) -> dict[str, WatchSpec]:
        """cache 모델 + 이벤트에서 유도한 event 모델.

        같은 모델이 양쪽에 있으면 cache가 우선합니다.
        """
        specs: dict[str, WatchSpec] = {}
        for spec in self.watch_list:
            specs[spec.model_name] = spec
        for event in self.events:
            model_name = event.partition(".")[0]
            if model_name not in specs:
                specs[model_name] = WatchSpec(model_name=model_name, mode=WatchMode.EVENT)
        return specs

    def event_methods(self, model_name: str) -> list[str]:
        """모델에 대해 등록된 이벤트 메서드 목록."""
        return [
            event.partition(".")[2] for event in self.events if event.partition(".")[0] == model_name
        ]

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> CacheOptions:
        """환경 변수의 watch/events를 기본값으로 사용."""
        kwargs.setdefault("watch_list", settings.watch_list)
        kwargs.setdefault("events", settings.events)
        return cls(**kwargs)
