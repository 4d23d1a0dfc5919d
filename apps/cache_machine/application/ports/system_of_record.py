"""System of Record Port.

원본 데이터 저장소(ORM/DB) 인터페이스입니다.
Cache 코어는 특정 ORM에 의존하지 않고 이 포트만 사용합니다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Sequence


@dataclass
class MutationContext:
    """저장소에서 관찰된 변경 하나.

    Attributes:
        model_name: 모델 이름
        instance: 저장된 인스턴스 (dict)
        data: 부분 변경 데이터 (instance가 없을 때 사용)
        where: 변경 대상 조건. {"id": 3} 또는 {"id": {"in": [3, 4]}}
        is_new_instance: 신규 생성 여부
        instances: 삭제 직전 인스턴스 목록 (None이면 where로 조회)
        extra: 저장소별 부가 정보 (필터에 그대로 전달)
    """

    model_name: str
    instance: dict[str, Any] | None = None
    data: dict[str, Any] | None = None
    where: dict[str, Any] | None = None
    is_new_instance: bool = False
    instances: list[dict[str, Any]] | None = None
    extra: dict[str, Any] = field(default_factory=dict)


MutationHandler = Callable[[MutationContext], None]


class SystemOfRecord(Protocol):
    """원본 저장소.

    구현체:
        - SqlAlchemySource (infrastructure/persistence_sqla/)
    """

    def model_names(self) -> Sequence[str]:
        """제공 가능한 모델 이름 목록."""
        ...

    def has_model(self, model_name: str) -> bool:
        ...

    def find(
        self,
        model_name: str,
        fields: Sequence[str] | None = None,
        where: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """레코드 조회.

        Args:
            model_name: 모델 이름
            fields: projection 필드 (비어있으면 전체, id는 항상 포함)
            where: 조건

        Returns:
            레코드 dict 목록 (저장소 객체와 별칭 관계가 없는 사본)
        """
        ...

    def on_after_mutation(self, model_name: str, handler: MutationHandler) -> None:
        """생성/수정 후 훅 등록."""
        ...

    def on_before_delete(self, model_name: str, handler: MutationHandler) -> None:
        """삭제 전 훅 등록. 삭제 대상은 삭제 전에 캡처되며, 전달은 commit 이후일 수 있습니다."""
        ...

    def clear_observers(self) -> None:
        """등록한 훅 전부 해제."""
        ...
