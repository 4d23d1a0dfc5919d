"""ChangePublisher 테스트."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from apps.cache_machine.application.ports.system_of_record import MutationContext
from apps.cache_machine.application.replication.publisher import (
    ChangePublisher,
    PublishStatus,
    normalize_filters,
    target_ids,
)
from apps.cache_machine.domain.enums import MethodName, TopicGranularity
from apps.cache_machine.domain.records import ChangeRecord


class Emitted:
    """emit(records, topic) 호출 기록."""

    def __init__(self) -> None:
        self.calls: list[tuple[list[ChangeRecord], str]] = []

    def __call__(self, records: list[ChangeRecord], topic: str) -> None:
        self.calls.append((list(records), topic))

    @property
    def records(self) -> list[ChangeRecord]:
        return [r for records, _ in self.calls for r in records]

    @property
    def topics(self) -> list[str]:
        return [topic for _, topic in self.calls]


@pytest.fixture
def emitted() -> Emitted:
    return Emitted()


class TestTargetIds:
    """target_ids 테스트."""

    def test_scalar(self) -> None:
        assert target_ids(3) == [3]
        assert target_ids("abc") == ["abc"]

    def test_set_keeps_numeric_only(self) -> None:
        assert target_ids({"in": [3, 4, "x"]}) == [3, 4]
        assert target_ids({"inq": [5, True, None]}) == [5]

    def test_invalid(self) -> None:
        assert target_ids(None) == []
        assert target_ids("") == []
        assert target_ids({"in": "3"}) == []


class TestNormalizeFilters:
    def test_non_callables_dropped(self) -> None:
        fn = lambda *args: True  # noqa: E731
        assert normalize_filters([fn, "nope", None]) == [fn]


class TestPublish:
    """생성/수정 발행."""

    def test_create_publishes_one_record(self, emitted: Emitted) -> None:
        publisher = ChangePublisher(emitted)

        result = publisher.publish(
            MutationContext("Customer", instance={"id": 1, "name": "Ann"}, is_new_instance=True)
        )

        assert result.status is PublishStatus.PUBLISHED
        assert emitted.calls == [
            ([ChangeRecord("Customer", MethodName.CREATE, 1, {"id": 1, "name": "Ann"})], "Customer")
        ]

    def test_update_method_and_topic_granularity(self, emitted: Emitted) -> None:
        publisher = ChangePublisher(emitted, granularity=TopicGranularity.MODEL_METHOD)

        publisher.publish(MutationContext("Customer", instance={"id": 1, "name": "Ann"}))

        assert emitted.records[0].method_name is MethodName.UPDATE
        assert emitted.topics == ["Customer.update"]

    def test_shared_topic(self, emitted: Emitted) -> None:
        publisher = ChangePublisher(emitted, granularity=TopicGranularity.SHARED)
        publisher.publish(MutationContext("Customer", instance={"id": 1}))
        assert emitted.topics == ["models"]

    def test_any_filter_false_emits_nothing(self, emitted: Emitted) -> None:
        publisher = ChangePublisher(emitted, filters=[lambda *a: True, lambda *a: False])

        result = publisher.publish(MutationContext("Customer", instance={"id": 1}))

        assert result.status is PublishStatus.FILTERED
        assert emitted.calls == []

    def test_all_filters_true_or_non_callable(self, emitted: Emitted) -> None:
        publisher = ChangePublisher(emitted, filters=[lambda *a: True, "not-callable"])

        publisher.publish(MutationContext("Customer", instance={"id": 1}))

        assert len(emitted.records) == 1

    def test_filter_receives_mutation(self, emitted: Emitted) -> None:
        seen: list[tuple[Any, ...]] = []

        def only_gold(model_name: str, method_name: str, instance: dict, ctx: MutationContext) -> bool:
            seen.append((model_name, method_name, instance["tier"]))
            return instance["tier"] == "gold"

        publisher = ChangePublisher(emitted, filters=[only_gold])
        publisher.publish(MutationContext("Customer", instance={"id": 1, "tier": "gold"}))
        publisher.publish(MutationContext("Customer", instance={"id": 2, "tier": "silver"}))

        assert seen == [("Customer", "update", "gold"), ("Customer", "update", "silver")]
        assert [r.model_id for r in emitted.records] == [1]

    def test_raising_filter_rejects(self, emitted: Emitted) -> None:
        def broken(*args: Any) -> bool:
            raise RuntimeError("boom")

        publisher = ChangePublisher(emitted, filters=[broken])
        result = publisher.publish(MutationContext("Customer", instance={"id": 1}))

        assert result.status is PublishStatus.FILTERED
        assert emitted.calls == []

    def test_fan_out_skips_non_numeric(self, emitted: Emitted) -> None:
        """{in: [3, 4, "x"]} → 정확히 두 레코드."""
        publisher = ChangePublisher(emitted)

        result = publisher.publish(
            MutationContext("Customer", data={"tier": "gold"}, where={"id": {"in": [3, 4, "x"]}})
        )

        assert [r.model_id for r in emitted.records] == [3, 4]
        assert all(r.data == {"tier": "gold"} for r in emitted.records)
        assert len(emitted.calls) == 2
        assert len(result.records) == 2

    def test_instance_is_copied(self, emitted: Emitted) -> None:
        instance = {"id": 1, "tags": ["a"]}
        ChangePublisher(emitted).publish(MutationContext("Customer", instance=instance))

        instance["tags"].append("b")

        assert emitted.records[0].data == {"id": 1, "tags": ["a"]}

    def test_no_id_skipped(self, emitted: Emitted) -> None:
        result = ChangePublisher(emitted).publish(MutationContext("Customer", instance={"name": "x"}))
        assert result.status is PublishStatus.SKIPPED
        assert emitted.calls == []

    def test_emit_failure_is_swallowed(self) -> None:
        emit = MagicMock(side_effect=ConnectionError("down"))
        result = ChangePublisher(emit).publish(MutationContext("Customer", instance={"id": 1}))

        assert result.status is PublishStatus.PUBLISHED
        emit.assert_called_once()

    def test_versioned_records(self, emitted: Emitted) -> None:
        ChangePublisher(emitted, versioned=True).publish(MutationContext("Customer", instance={"id": 1}))
        assert isinstance(emitted.records[0].version, int)


class TestPublishDeletion:
    """삭제 발행."""

    def test_instances_given(self, emitted: Emitted) -> None:
        publisher = ChangePublisher(emitted)

        result = publisher.publish_deletion(
            MutationContext("Customer", where={"id": 1}, instances=[{"id": 1, "name": "Ann"}])
        )

        assert result.status is PublishStatus.PUBLISHED
        assert emitted.records == [ChangeRecord("Customer", MethodName.DELETE, 1)]

    def test_lookup_through_source(self, emitted: Emitted) -> None:
        source = MagicMock()
        source.find.return_value = [{"id": 3}, {"id": 4}]
        publisher = ChangePublisher(emitted, source=source)

        publisher.publish_deletion(MutationContext("Customer", where={"id": {"in": [3, 4]}}))

        source.find.assert_called_once_with("Customer", where={"id": {"in": [3, 4]}})
        assert [r.model_id for r in emitted.records] == [3, 4]
        assert all(r.data is None for r in emitted.records)

    def test_filters_run_per_instance(self, emitted: Emitted) -> None:
        publisher = ChangePublisher(emitted, filters=[lambda m, method, inst, ctx: inst["id"] != 3])

        publisher.publish_deletion(
            MutationContext("Customer", instances=[{"id": 3}, {"id": 4}])
        )

        assert [r.model_id for r in emitted.records] == [4]

    def test_all_rejected(self, emitted: Emitted) -> None:
        publisher = ChangePublisher(emitted, filters=[lambda *a: False])
        result = publisher.publish_deletion(MutationContext("Customer", instances=[{"id": 3}]))
        assert result.status is PublishStatus.FILTERED

    def test_lookup_failure_skipped(self, emitted: Emitted) -> None:
        source = MagicMock()
        source.find.side_effect = RuntimeError("db down")

        result = ChangePublisher(emitted, source=source).publish_deletion(
            MutationContext("Customer", where={"id": 1})
        )

        assert result.status is PublishStatus.SKIPPED
        assert emitted.calls == []

    def test_nothing_matched(self, emitted: Emitted) -> None:
        source = MagicMock()
        source.find.return_value = []
        result = ChangePublisher(emitted, source=source).publish_deletion(
            MutationContext("Customer", where={"id": 1})
        )
        assert result.status is PublishStatus.SKIPPED
