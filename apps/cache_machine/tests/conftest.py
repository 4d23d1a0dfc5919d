"""cache_machine 테스트 공통 Fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

# 프로젝트 루트를 sys.path에 추가
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

import copy
import itertools
import json
from typing import Any, Callable

import pytest

from apps.cache_machine.application.ports.system_of_record import MutationContext
from apps.cache_machine.setup.config import CacheOptions, Settings, get_settings


# ─────────────────────────────────────────────────────────────
# In-memory message bus
# ─────────────────────────────────────────────────────────────


class InMemorySubscription:
    """동기 전달 구독. 같은 이름을 공유하면 핸들러끼리 메시지를 나눠 받음."""

    def __init__(self, name: str, durable: bool = False) -> None:
        self.name = name
        self.durable = durable
        self.handlers: list[Callable[[Any], None]] = []
        self.error_handlers: list[Callable[[Exception], None]] = []
        self.pending: list[Any] = []
        self.closed = False
        self._turn = itertools.count()

    def on_message(self, handler: Callable[[Any], None]) -> None:
        self.handlers.append(handler)
        pending, self.pending = self.pending, []
        for payload in pending:
            self.deliver(payload)

    def on_error(self, handler: Callable[[Exception], None]) -> None:
        self.error_handlers.append(handler)

    def deliver(self, payload: Any) -> None:
        if self.closed:
            return
        if not self.handlers:
            self.pending.append(payload)
            return
        handler = self.handlers[next(self._turn) % len(self.handlers)]
        try:
            handler(payload)
        except Exception as e:
            for error_handler in self.error_handlers:
                error_handler(e)

    def close(self) -> None:
        self.closed = True


class InMemoryTopic:
    def __init__(self, bus: InMemoryBus, name: str) -> None:
        self.bus = bus
        self.name = name
        self.subscriptions: dict[str, InMemorySubscription] = {}
        self.published: list[Any] = []

    def publish(self, payload: Any) -> bool:
        if self.bus.fail_publish:
            return False
        wire = json.loads(json.dumps(payload))
        self.published.append(wire)
        for subscription in list(self.subscriptions.values()):
            subscription.deliver(copy.deepcopy(wire))
        return True

    def subscribe(self, subscription_name: str, *, durable: bool = False) -> InMemorySubscription:
        if self.bus.fail_subscribe:
            raise ConnectionError("broker unavailable")
        subscription = self.subscriptions.get(subscription_name)
        if subscription is None or subscription.closed:
            subscription = InMemorySubscription(subscription_name, durable)
            self.subscriptions[subscription_name] = subscription
        return subscription


class InMemoryBus:
    """테스트용 메시지 버스. 발행 즉시 구독 핸들러를 호출."""

    def __init__(self) -> None:
        self.topics: dict[str, InMemoryTopic] = {}
        self.fail_publish = False
        self.fail_subscribe = False
        self.closed = False

    def topic(self, name: str) -> InMemoryTopic:
        if name not in self.topics:
            self.topics[name] = InMemoryTopic(self, name)
        return self.topics[name]

    def published(self, name: str) -> list[Any]:
        topic = self.topics.get(name)
        return topic.published if topic else []

    def close(self) -> None:
        self.closed = True


# ─────────────────────────────────────────────────────────────
# In-memory system of record
# ─────────────────────────────────────────────────────────────


class FakeSource:
    """dict 기반 원본 저장소. 변경 시 등록된 훅을 호출."""

    def __init__(self, models: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.rows: dict[str, dict[Any, dict[str, Any]]] = {}
        for name, rows in (models or {}).items():
            self.rows[name] = {row["id"]: dict(row) for row in rows}
        self.after_mutation: dict[str, list[Callable]] = {}
        self.before_delete: dict[str, list[Callable]] = {}
        self.find_calls: list[tuple[str, Any, Any]] = []
        self._ids = itertools.count(1000)

    def model_names(self) -> list[str]:
        return list(self.rows)

    def has_model(self, model_name: str) -> bool:
        return model_name in self.rows

    def find(self, model_name: str, fields=None, where=None) -> list[dict[str, Any]]:
        self.find_calls.append((model_name, fields, where))
        result = []
        for row in self.rows[model_name].values():
            if not self._matches(row, where or {}):
                continue
            if fields:
                row = {k: v for k, v in row.items() if k in set(fields) | {"id"}}
            result.append(copy.deepcopy(row))
        return result

    def on_after_mutation(self, model_name: str, handler: Callable) -> None:
        self.after_mutation.setdefault(model_name, []).append(handler)

    def on_before_delete(self, model_name: str, handler: Callable) -> None:
        self.before_delete.setdefault(model_name, []).append(handler)

    def clear_observers(self) -> None:
        self.after_mutation.clear()
        self.before_delete.clear()

    # 변경 API

    def create(self, model_name: str, data: dict[str, Any]) -> dict[str, Any]:
        row = dict(data)
        row.setdefault("id", next(self._ids))
        self.rows[model_name][row["id"]] = row
        self._fire_after(MutationContext(model_name, instance=dict(row), is_new_instance=True))
        return row

    def update(self, model_name: str, model_id: Any, changes: dict[str, Any]) -> dict[str, Any]:
        row = self.rows[model_name][model_id]
        row.update(changes)
        self._fire_after(MutationContext(model_name, instance=dict(row)))
        return row

    def update_all(self, model_name: str, where: dict[str, Any], data: dict[str, Any]) -> None:
        for row in self.rows[model_name].values():
            if self._matches(row, where):
                row.update(data)
        self._fire_after(MutationContext(model_name, data=dict(data), where=dict(where)))

    def delete(self, model_name: str, model_id: Any) -> None:
        ctx = MutationContext(model_name, where={"id": model_id})
        for handler in self.before_delete.get(model_name, []):
            handler(ctx)
        self.rows[model_name].pop(model_id, None)

    def _fire_after(self, ctx: MutationContext) -> None:
        for handler in self.after_mutation.get(ctx.model_name, []):
            handler(ctx)

    @staticmethod
    def _matches(row: dict[str, Any], where: dict[str, Any]) -> bool:
        for key, condition in where.items():
            if isinstance(condition, dict):
                members = condition.get("in", condition.get("inq")) or []
                if row.get(key) not in members:
                    return False
            elif row.get(key) != condition:
                return False
        return True


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Settings 팩토리 (.env 무시)."""

    def factory(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "service_name": "orders",
            "environment": "test",
            "prime_timeout_seconds": 2.0,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def bus() -> InMemoryBus:
    return InMemoryBus()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource(
        {
            "Customer": [
                {"id": 1, "name": "Ann", "tier": "gold"},
                {"id": 2, "name": "Bob", "tier": "silver"},
            ],
            "Order": [
                {"id": 10, "customer_id": 1, "total": 30},
            ],
        }
    )


@pytest.fixture
def events() -> list[tuple[str, str, Any, Any]]:
    """event_handler 호출 기록."""
    return []


@pytest.fixture
def recording_handler(events: list) -> Callable[..., None]:
    def handler(model_name: str, method_name: str, model_id: Any, data: Any, callback: Callable) -> None:
        events.append((model_name, method_name, model_id, data))
        callback(None)

    return handler


@pytest.fixture
def ready_calls() -> list[tuple[Any, Any]]:
    return []


@pytest.fixture
def make_options(ready_calls: list) -> Callable[..., CacheOptions]:
    def factory(**kwargs: Any) -> CacheOptions:
        kwargs.setdefault("on_ready", lambda error, result: ready_calls.append((error, result)))
        return CacheOptions(**kwargs)

    return factory
