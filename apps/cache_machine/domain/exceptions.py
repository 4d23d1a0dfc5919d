"""Domain Exceptions.

에러 분류:
    - ConfigurationError: 생성 시점에 동기적으로 발생 (치명적)
    - MalformedRecordError: 로그 후 레코드 폐기 (비치명적)
    - TransportError: 로그 후 무시, 재시도 없음 (비치명적)
    - PrimingTimeoutError: on_ready 콜백으로만 전달
"""

from __future__ import annotations

from typing import Any


class CacheMachineError(Exception):
    """Cache machine 기본 예외."""


class ConfigurationError(CacheMachineError):
    """잘못된 설정 (환경 태그 누락, 역할 오류 등)."""


class MalformedRecordError(CacheMachineError):
    """필수 필드가 빠진 ChangeRecord."""

    def __init__(self, reason: str, payload: Any = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.payload = payload


class PrimingTimeoutError(CacheMachineError):
    """Priming 응답이 제한 시간 내에 도착하지 않음."""

    def __init__(self, service_name: str, timeout: float) -> None:
        super().__init__(
            f"Priming response for '{service_name}' not received within {timeout}s"
        )
        self.service_name = service_name
        self.timeout = timeout


class CacheNotFoundError(CacheMachineError):
    """레지스트리에 등록되지 않은 서비스."""

    def __init__(self, service_name: str) -> None:
        super().__init__(f"No cache registered for service '{service_name}'")
        self.service_name = service_name


class TransportError(CacheMachineError):
    """메시지 버스 발행/구독 실패."""
