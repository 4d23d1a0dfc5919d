"""Message Bus Port.

Pub/Sub 메시지 버스 인터페이스입니다.
전달 보장은 at-least-once, 순서 보장 없음을 가정합니다.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol

MessageHandler = Callable[[Any], None]
ErrorHandler = Callable[[Exception], None]


class Subscription(Protocol):
    """토픽 구독.

    on_message 핸들러가 정상 반환하면 메시지는 ack 됩니다.
    """

    name: str

    def on_message(self, handler: MessageHandler) -> None:
        """메시지 핸들러 등록. 등록 시점부터 소비를 시작합니다.

        Args:
            handler: 디코딩된 JSON 페이로드를 받는 콜백
        """
        ...

    def on_error(self, handler: ErrorHandler) -> None:
        """구독 에러 핸들러 등록."""
        ...

    def close(self) -> None:
        """소비 중지."""
        ...


class Topic(Protocol):
    """발행/구독 대상 토픽."""

    name: str

    def publish(self, payload: Any) -> bool:
        """JSON 호환 페이로드 발행.

        실패는 내부에서 로그하고 False를 반환합니다. 예외를 던지지 않습니다.
        """
        ...

    def subscribe(self, subscription_name: str, *, durable: bool = False) -> Subscription:
        """구독 생성 (find-or-create).

        반환 시점에 구독은 이미 토픽에 바인딩되어 있어야 합니다.

        Args:
            subscription_name: 구독 이름
            durable: True면 재시작/인스턴스 간 공유되는 영속 구독
        """
        ...


class MessageBus(Protocol):
    """메시지 버스.

    구현체:
        - KombuMessageBus (infrastructure/messaging/)
    """

    def topic(self, name: str) -> Topic:
        """토픽 조회 또는 생성 (find-or-create).

        Args:
            name: 환경 태그가 붙은 물리 토픽 이름
        """
        ...

    def close(self) -> None:
        """모든 구독과 연결 정리."""
        ...
