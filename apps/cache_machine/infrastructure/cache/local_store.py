"""Thread-safe local store for replicated records.

모델 이름별 버킷에 레코드를 보관하는 인메모리 복제본입니다.
버킷이 없으면 "감시하지 않음", 비어있는 버킷은 "감시 중, 레코드 없음"을 뜻합니다.
이 구분이 ApplyEngine의 수용 여부를 결정합니다.

모든 변경은 ApplyEngine을 통해 들어옵니다.
kombu 구독마다 별도 스레드가 돌기 때문에 버킷 접근은 lock으로 보호합니다.
"""

from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Callable

logger = logging.getLogger(__name__)


class LocalStore:
    """프로세스 전용 레코드 복제본.

    Usage:
        store = LocalStore()
        store.watch("Customer")
        store.get("Customer", 1)
        store.find_one("Customer", "name", "Ann")
    """

    def __init__(self) -> None:
        self._buckets: dict[str, dict[Any, dict[str, Any]]] = {}
        self._versions: dict[str, dict[Any, int]] = {}
        self._lock = RLock()

    @property
    def lock(self) -> RLock:
        """버킷 직접 접근 시 잡아야 하는 lock."""
        return self._lock

    def watch(self, model_name: str) -> None:
        """버킷 할당. 이미 있으면 유지."""
        with self._lock:
            if model_name not in self._buckets:
                self._buckets[model_name] = {}
                self._versions[model_name] = {}
                logger.debug("local_store_bucket_created", extra={"model_name": model_name})

    def is_watched(self, model_name: str) -> bool:
        return model_name in self._buckets

    def watched_models(self) -> list[str]:
        with self._lock:
            return list(self._buckets)

    def bucket(self, model_name: str) -> dict[Any, dict[str, Any]] | None:
        """원본 버킷 반환 (lock 안에서만 사용)."""
        return self._buckets.get(model_name)

    def versions(self, model_name: str) -> dict[Any, int]:
        """원본 버전 맵 반환 (lock 안에서만 사용)."""
        return self._versions.setdefault(model_name, {})

    # ─────────────────────────────────────────────────────────────
    # 조회
    # ─────────────────────────────────────────────────────────────

    def get(self, model_name: str, model_id: Any) -> dict[str, Any] | None:
        """단일 레코드 조회. 없으면 None."""
        with self._lock:
            bucket = self._buckets.get(model_name)
            if bucket is None:
                return None
            return bucket.get(model_id)

    def all(self, model_name: str) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._buckets.get(model_name, {}).values())

    def find_one(self, model_name: str, key: str, value: Any) -> dict[str, Any] | None:
        """key 필드가 value인 첫 레코드."""
        for record in self.all(model_name):
            if record.get(key) == value:
                return record
        return None

    def find_all(self, model_name: str, key: str, value: Any) -> list[dict[str, Any]]:
        """key 필드가 value인 모든 레코드."""
        return [record for record in self.all(model_name) if record.get(key) == value]

    def filter(
        self, model_name: str, predicate: Callable[[dict[str, Any]], bool]
    ) -> list[dict[str, Any]]:
        """predicate를 만족하는 모든 레코드."""
        return [record for record in self.all(model_name) if predicate(record)]

    def count(self, model_name: str | None = None) -> int:
        with self._lock:
            if model_name is not None:
                return len(self._buckets.get(model_name, {}))
            return sum(len(bucket) for bucket in self._buckets.values())

    def snapshot(self) -> dict[str, dict[Any, dict[str, Any]]]:
        """현재 상태의 얕은 사본."""
        with self._lock:
            return {name: dict(bucket) for name, bucket in self._buckets.items()}

    def clear(self) -> None:
        """모든 버킷 제거 (테스트/재초기화용)."""
        with self._lock:
            self._buckets.clear()
            self._versions.clear()
            logger.warning("local_store_cleared")
