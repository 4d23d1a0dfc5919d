"""Event Dispatcher.

적용된 ChangeRecord를 "{modelName}.{methodName}" 감시 목록과 비교해
등록된 핸들러를 호출합니다. priming/실시간 여부와 무관하게 동작합니다.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from apps.cache_machine.domain.records import ChangeRecord
from apps.cache_machine.metrics import CACHE_EVENT_HANDLER_ERRORS, CACHE_EVENTS_DISPATCHED

logger = logging.getLogger(__name__)

EventCallback = Callable[[Optional[Exception]], None]
EventHandler = Callable[[str, str, Any, Optional[dict], EventCallback], None]
EventErrorHandler = Callable[[Exception], None]


def parse_event_name(event: str) -> tuple[str, str]:
    """"Model.method" → (model, method)."""
    model_name, _, method_name = event.partition(".")
    return model_name, method_name


class EventDispatcher:
    """이벤트 라우터.

    핸들러 에러는 호출 단위로 격리됩니다. error_handler로 전달하거나 로그만 남기고,
    디스패치 루프로 다시 던지지 않습니다.
    """

    def __init__(
        self,
        events: Iterable[str],
        handler: EventHandler | None,
        error_handler: EventErrorHandler | None = None,
    ) -> None:
        """Initialize.

        Args:
            events: 감시할 이벤트 목록 ("Order.update" 형태)
            handler: handler(model_name, method_name, model_id, data, callback)
            error_handler: 핸들러 실패 시 호출 (없으면 로그)
        """
        self._events = frozenset(events)
        self._handler = handler
        self._error_handler = error_handler

    @property
    def events(self) -> frozenset[str]:
        return self._events

    def is_registered(self, event: str) -> bool:
        return event in self._events

    def dispatch_all(self, records: Iterable[ChangeRecord]) -> None:
        for record in records:
            self.dispatch(record)

    def dispatch(self, record: ChangeRecord) -> bool:
        """레코드 하나를 라우팅.

        Returns:
            핸들러가 호출되었으면 True
        """
        if self._handler is None or record.event_name not in self._events:
            return False

        CACHE_EVENTS_DISPATCHED.inc()

        def callback(error: Exception | None = None, *_: Any) -> None:
            if error:
                self._handle_error(error, record)

        try:
            self._handler(
                record.model_name,
                record.method_name.value,
                record.model_id,
                record.data,
                callback,
            )
        except Exception as e:
            self._handle_error(e, record)
        return True

    def _handle_error(self, error: Exception, record: ChangeRecord) -> None:
        CACHE_EVENT_HANDLER_ERRORS.inc()
        if self._error_handler is not None:
            try:
                self._error_handler(error)
            except Exception:
                logger.exception(
                    "event_error_handler_failed",
                    extra={"event": record.event_name, "model_id": record.model_id},
                )
            return
        logger.error(
            "event_handler_error",
            extra={
                "event": record.event_name,
                "model_id": record.model_id,
                "error": str(error),
            },
        )
