"""Apply Engine.

수신한 ChangeRecord를 LocalStore에 반영합니다.

적용 정책 (at-least-once, 순서 무보장 전달 전제):
    - update: 무조건 덮어쓰기 (last-write-wins)
    - create / prime: write-if-absent. 비어있거나 id가 없는 슬롯에만 기록
    - delete: 슬롯 제거. 없으면 no-op
    - 버킷이 없는 모델(감시하지 않음)의 레코드는 조용히 버림

update 재정렬은 안전하지 않습니다. 늦게 도착한 오래된 update가 이깁니다.
레코드에 version이 있으면 더 오래된 update만 stale로 버립니다.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from apps.cache_machine.domain.enums import MethodName
from apps.cache_machine.domain.exceptions import MalformedRecordError
from apps.cache_machine.domain.records import ChangeRecord
from apps.cache_machine.metrics import CACHE_RECORDS_APPLIED, CACHE_RECORDS_DROPPED

if TYPE_CHECKING:
    from apps.cache_machine.infrastructure.cache.local_store import LocalStore

logger = logging.getLogger(__name__)


def as_batch(payload: Any) -> list[Any]:
    """단건 레코드와 배치(JSON array)를 모두 리스트로 정규화."""
    if isinstance(payload, list):
        return payload
    return [payload]


class ApplyEngine:
    """LocalStore 변경의 단일 진입점.

    어떤 입력에도 예외를 던지지 않습니다. 잘못된 레코드는 로그 후 폐기합니다.
    """

    def __init__(self, store: LocalStore) -> None:
        """Initialize.

        Args:
            store: 반영 대상 로컬 저장소
        """
        self._store = store

    @property
    def store(self) -> LocalStore:
        return self._store

    def apply_batch(self, payload: Any) -> list[ChangeRecord]:
        """배치 또는 단건 페이로드 적용.

        Returns:
            검증을 통과한 레코드 목록 (적용 여부와 무관, 이벤트 디스패치용)
        """
        valid: list[ChangeRecord] = []
        for item in as_batch(payload):
            record = self.apply_payload(item)
            if record is not None:
                valid.append(record)
        return valid

    def apply_payload(self, payload: Any) -> ChangeRecord | None:
        """Wire format 레코드 하나를 검증 후 적용.

        Returns:
            검증된 레코드. 잘못된 레코드면 None
        """
        try:
            record = ChangeRecord.from_dict(payload)
        except MalformedRecordError as e:
            CACHE_RECORDS_DROPPED.labels(reason="malformed").inc()
            logger.error(
                "change_record_malformed",
                extra={"reason": e.reason, "payload": repr(payload)},
            )
            return None

        self.apply(record)
        return record

    def apply(self, record: ChangeRecord) -> bool:
        """검증된 레코드 적용.

        Returns:
            저장소가 변경되었으면 True
        """
        with self._store.lock:
            bucket = self._store.bucket(record.model_name)
            if bucket is None:
                CACHE_RECORDS_DROPPED.labels(reason="unwatched").inc()
                logger.debug(
                    "change_record_unwatched",
                    extra={"model_name": record.model_name, "method": record.method_name.value},
                )
                return False

            versions = self._store.versions(record.model_name)
            model_id = record.model_id
            method = record.method_name

            if method is MethodName.UPDATE:
                stored_version = versions.get(model_id)
                if (
                    record.version is not None
                    and stored_version is not None
                    and record.version < stored_version
                ):
                    CACHE_RECORDS_DROPPED.labels(reason="stale").inc()
                    logger.info(
                        "change_record_stale",
                        extra={
                            "model_name": record.model_name,
                            "model_id": model_id,
                            "version": record.version,
                            "stored_version": stored_version,
                        },
                    )
                    return False
                bucket[model_id] = record.data
                self._remember_version(versions, model_id, record.version)

            elif method in (MethodName.CREATE, MethodName.PRIME):
                existing = bucket.get(model_id)
                if existing is not None and existing.get("id") not in (None, ""):
                    return False
                bucket[model_id] = record.data
                self._remember_version(versions, model_id, record.version)

            elif method is MethodName.DELETE:
                if model_id not in bucket:
                    return False
                del bucket[model_id]
                versions.pop(model_id, None)

        CACHE_RECORDS_APPLIED.labels(method=method.value).inc()
        return True

    @staticmethod
    def _remember_version(versions: dict[Any, int], model_id: Any, version: int | None) -> None:
        if version is None:
            return
        current = versions.get(model_id)
        if current is None or version > current:
            versions[model_id] = version
