"""Change Publisher.

저장소에서 관찰된 변경을 필터 체인에 통과시키고,
허용되면 대상 id마다 ChangeRecord 하나씩을 발행합니다.

필터가 거부해도 변경 자체는 막지 않습니다. 전파만 막습니다.
발행 실패는 로그만 남기고 재시도하지 않으며 호출자에게 전달하지 않습니다.
"""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Iterable, Mapping

from apps.cache_machine.application.ports.system_of_record import (
    MutationContext,
    SystemOfRecord,
)
from apps.cache_machine.domain.enums import MethodName, TopicGranularity
from apps.cache_machine.domain.naming import model_topic
from apps.cache_machine.domain.records import ChangeRecord
from apps.cache_machine.metrics import CACHE_MUTATIONS_FILTERED

logger = logging.getLogger(__name__)

FilterFn = Callable[[str, str, Any, MutationContext], bool]
EmitFn = Callable[[list[ChangeRecord], str], None]


class PublishStatus(Enum):
    """발행 결과 상태.

    - PUBLISHED: 레코드 발행됨
    - FILTERED: 필터 체인이 거부
    - SKIPPED: 발행할 대상이 없음 (인스턴스/id 없음)
    """

    PUBLISHED = auto()
    FILTERED = auto()
    SKIPPED = auto()


@dataclass(frozen=True)
class PublishResult:
    """발행 결과."""

    status: PublishStatus
    records: tuple[ChangeRecord, ...] = ()
    message: str | None = None

    @property
    def is_published(self) -> bool:
        return self.status == PublishStatus.PUBLISHED

    @classmethod
    def published(cls, records: Iterable[ChangeRecord]) -> PublishResult:
        return cls(status=PublishStatus.PUBLISHED, records=tuple(records))

    @classmethod
    def filtered(cls) -> PublishResult:
        return cls(status=PublishStatus.FILTERED, message="rejected by filter chain")

    @classmethod
    def skipped(cls, message: str) -> PublishResult:
        return cls(status=PublishStatus.SKIPPED, message=message)


def normalize_filters(filters: Iterable[Any] | None) -> list[FilterFn]:
    """호출 불가능한 필터는 경고 후 제외 (통과로 취급)."""
    valid: list[FilterFn] = []
    for fn in filters or ():
        if callable(fn):
            valid.append(fn)
        else:
            logger.warning("publish_filter_ignored", extra={"filter": repr(fn)})
    return valid


def target_ids(model_id: Any) -> list[Any]:
    """변경 대상 id 목록.

    스칼라 id는 그대로, {"in": [...]} 집합은 숫자 id만 남깁니다.
    """
    if isinstance(model_id, Mapping):
        members = model_id.get("in", model_id.get("inq"))
        if not isinstance(members, (list, tuple)):
            return []
        return [i for i in members if isinstance(i, int) and not isinstance(i, bool)]
    if isinstance(model_id, bool):
        return []
    if isinstance(model_id, (int, str)) and model_id != "":
        return [model_id]
    return []


class ChangePublisher:
    """저장소 변경 → ChangeRecord 발행기."""

    def __init__(
        self,
        emit: EmitFn,
        filters: Iterable[Any] | None = None,
        granularity: TopicGranularity = TopicGranularity.MODEL,
        source: SystemOfRecord | None = None,
        versioned: bool = False,
    ) -> None:
        """Initialize.

        Args:
            emit: emit(records, logical_topic) 발행 함수
            filters: filter(model_name, method_name, instance, ctx) → bool 목록
            granularity: 토픽 분할 단위
            source: 삭제 대상 조회용 저장소
            versioned: True면 레코드에 version(ns timestamp)을 찍음
        """
        self._emit_fn = emit
        self._filters = normalize_filters(filters)
        self._granularity = granularity
        self._source = source
        self._versioned = versioned

    @property
    def filters(self) -> list[FilterFn]:
        return list(self._filters)

    def should_publish(
        self,
        model_name: str,
        method_name: MethodName,
        instance: Any,
        ctx: MutationContext,
    ) -> bool:
        """필터 체인 (logical AND). 필터가 예외를 던지면 거부로 취급."""
        for fn in self._filters:
            try:
                if not fn(model_name, method_name.value, instance, ctx):
                    return False
            except Exception:
                logger.exception(
                    "publish_filter_error",
                    extra={"model_name": model_name, "method": method_name.value},
                )
                return False
        return True

    def publish(self, ctx: MutationContext) -> PublishResult:
        """생성/수정 후 훅에서 호출."""
        source_obj = ctx.instance if ctx.instance is not None else ctx.data
        if source_obj is None:
            return PublishResult.skipped("no instance or data")

        instance = copy.deepcopy(dict(source_obj))
        model_id = instance.get("id")
        if model_id in (None, ""):
            model_id = (ctx.where or {}).get("id")
        if model_id in (None, ""):
            return PublishResult.skipped("model id not resolvable")

        method = MethodName.CREATE if ctx.is_new_instance else MethodName.UPDATE
        if not self.should_publish(ctx.model_name, method, instance, ctx):
            CACHE_MUTATIONS_FILTERED.inc()
            return PublishResult.filtered()

        ids = target_ids(model_id)
        if not ids:
            return PublishResult.skipped("no numeric id in target set")

        version = time.time_ns() if self._versioned else None
        records = [
            ChangeRecord(
                model_name=ctx.model_name,
                method_name=method,
                model_id=i,
                data=copy.deepcopy(instance),
                version=version,
            )
            for i in ids
        ]
        self._emit(records)
        return PublishResult.published(records)

    def publish_deletion(self, ctx: MutationContext) -> PublishResult:
        """삭제 전 훅에서 호출. 대상 확인과 발행이 끝난 뒤 반환합니다."""
        targets = ctx.instances
        if targets is None:
            if self._source is None:
                return PublishResult.skipped("no source to resolve deletion")
            try:
                targets = self._source.find(ctx.model_name, where=ctx.where)
            except Exception:
                logger.exception(
                    "delete_targets_lookup_failed",
                    extra={"model_name": ctx.model_name, "where": repr(ctx.where)},
                )
                return PublishResult.skipped("deletion lookup failed")

        if not targets:
            return PublishResult.skipped("nothing to delete")

        records = []
        rejected = 0
        for target in copy.deepcopy(list(targets)):
            model_id = target.get("id")
            if model_id in (None, ""):
                continue
            if not self.should_publish(ctx.model_name, MethodName.DELETE, target, ctx):
                CACHE_MUTATIONS_FILTERED.inc()
                rejected += 1
                continue
            records.append(
                ChangeRecord(
                    model_name=ctx.model_name,
                    method_name=MethodName.DELETE,
                    model_id=model_id,
                )
            )

        if not records:
            if rejected:
                return PublishResult.filtered()
            return PublishResult.skipped("no target ids")

        self._emit(records)
        return PublishResult.published(records)

    def _emit(self, records: list[ChangeRecord]) -> None:
        # 대상 id당 메시지 하나
        for record in records:
            topic = model_topic(record.model_name, record.method_name, self._granularity)
            try:
                self._emit_fn([record], topic)
            except Exception:
                logger.exception(
                    "change_publish_error",
                    extra={"model_name": record.model_name, "topic": topic},
                )
