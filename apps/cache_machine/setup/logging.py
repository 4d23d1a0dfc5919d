"""Logging Configuration.

ECS JSON 로그에 cache machine 식별 정보(service.*, role)를 싣습니다.
브로커/ORM 라이브러리의 내부 로그는 WARNING 이상만 남깁니다.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import ecs_logging

from apps.cache_machine.setup.config import Settings, get_settings

# kombu/py-amqp 연결 로그, SQLAlchemy 쿼리 로그
QUIET_LOGGERS = ("kombu", "amqp", "sqlalchemy.engine")

_base_factory = logging.getLogRecordFactory()


def service_fields(settings: Settings) -> dict[str, Any]:
    """로그 레코드의 service 필드."""
    return {
        "name": settings.service_name,
        "version": settings.service_version,
        "environment": settings.environment,
        "role": settings.role.value if settings.role else None,
    }


def setup_logging(settings: Settings | None = None) -> None:
    """루트 로거를 ECS 포맷으로 교체.

    여러 번 호출해도 record factory가 중첩되지 않습니다.
    """
    settings = settings or get_settings()
    service = service_fields(settings)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ecs_logging.StdlibFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.upper())
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = _base_factory(*args, **kwargs)
        record.service = dict(service)
        return record

    logging.setLogRecordFactory(record_factory)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
