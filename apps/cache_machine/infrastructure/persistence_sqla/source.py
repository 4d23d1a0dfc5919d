"""SQLAlchemy System of Record.

SystemOfRecord 포트의 SQLAlchemy 구현체입니다.

훅 매핑:
    - after-mutation: mapper after_insert / after_update
    - before-delete: mapper before_delete (삭제 대상 인스턴스를 함께 전달)

mapper 이벤트는 flush 안에서 변경 내용을 캡처해 session.info에 쌓아 두고,
핸들러는 최상위 트랜잭션이 커밋된 뒤에 순서대로 호출됩니다.
rollback되거나 커밋 없이 닫힌 트랜잭션의 변경은 버립니다.
세션 밖에서 일어난 변경(object_session이 없음)은 즉시 전달합니다.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Sequence

from sqlalchemy import create_engine, event, inspect, select
from sqlalchemy.ext.automap import automap_base
from sqlalchemy.orm import Session, SessionTransaction, object_session, sessionmaker

from apps.cache_machine.application.ports.system_of_record import (
    MutationContext,
    MutationHandler,
)

logger = logging.getLogger(__name__)


def instance_to_dict(instance: Any) -> dict[str, Any]:
    """ORM 인스턴스 → 컬럼 값 dict (저장소 객체와 분리된 사본)."""
    mapper = inspect(instance).mapper
    return {attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs}


class SqlAlchemySource:
    """SQLAlchemy 기반 원본 저장소.

    Usage:
        source = SqlAlchemySource(sessionmaker(engine), [Customer, Order])
        source.find("Customer", fields=["name"])
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        models: Iterable[type],
    ) -> None:
        """Initialize.

        Args:
            session_factory: 조회용 세션 팩토리
            models: 제공할 매핑 클래스 (클래스 이름이 모델 이름)
        """
        self._session_factory = session_factory
        self._models: dict[str, type] = {model.__name__: model for model in models}
        self._listeners: list[tuple[Any, str, Callable[..., None]]] = []
        self._pending_key = f"cache_machine.pending.{id(self)}"
        self._session_hooks = False

    def model_names(self) -> Sequence[str]:
        return list(self._models)

    def has_model(self, model_name: str) -> bool:
        return model_name in self._models

    def find(
        self,
        model_name: str,
        fields: Sequence[str] | None = None,
        where: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """레코드 조회. projection에는 primary key가 항상 포함됩니다."""
        model = self._model(model_name)
        mapper = inspect(model)

        attrs = list(mapper.column_attrs)
        if fields:
            pk_keys = {mapper.get_property_by_column(col).key for col in mapper.primary_key}
            wanted = set(fields) | pk_keys
            attrs = [attr for attr in attrs if attr.key in wanted]

        stmt = select(*[getattr(model, attr.key) for attr in attrs])
        for key, condition in (where or {}).items():
            column = getattr(model, key)
            if isinstance(condition, Mapping):
                members = condition.get("in", condition.get("inq")) or []
                stmt = stmt.where(column.in_(list(members)))
            else:
                stmt = stmt.where(column == condition)

        with self._session_factory() as session:
            rows = session.execute(stmt).mappings().all()
        return [dict(row) for row in rows]

    def on_after_mutation(self, model_name: str, handler: MutationHandler) -> None:
        model = self._model(model_name)

        def after_insert(mapper: Any, connection: Any, target: Any) -> None:
            self._defer(
                target,
                handler,
                MutationContext(
                    model_name=model_name,
                    instance=instance_to_dict(target),
                    is_new_instance=True,
                ),
            )

        def after_update(mapper: Any, connection: Any, target: Any) -> None:
            self._defer(
                target,
                handler,
                MutationContext(
                    model_name=model_name,
                    instance=instance_to_dict(target),
                    is_new_instance=False,
                ),
            )

        self._listen(model, "after_insert", after_insert)
        self._listen(model, "after_update", after_update)

    def on_before_delete(self, model_name: str, handler: MutationHandler) -> None:
        model = self._model(model_name)

        def before_delete(mapper: Any, connection: Any, target: Any) -> None:
            # 삭제 대상은 flush 중에 확보
            data = instance_to_dict(target)
            self._defer(
                target,
                handler,
                MutationContext(
                    model_name=model_name,
                    where={"id": data.get("id")},
                    instances=[data],
                ),
            )

        self._listen(model, "before_delete", before_delete)

    def clear_observers(self) -> None:
        """등록한 mapper/session 이벤트 해제."""
        for target, identifier, fn in self._listeners:
            if event.contains(target, identifier, fn):
                event.remove(target, identifier, fn)
        self._listeners.clear()
        self._session_hooks = False

    def _defer(self, target: Any, handler: MutationHandler, ctx: MutationContext) -> None:
        """세션 커밋까지 핸들러 호출을 미룸."""
        session = object_session(target)
        if session is None:
            handler(ctx)
            return
        session.info.setdefault(self._pending_key, []).append((handler, ctx))

    def _install_session_hooks(self) -> None:
        if self._session_hooks:
            return
        key = self._pending_key

        def after_commit(session: Session) -> None:
            if session.in_nested_transaction():
                return
            pending = session.info.pop(key, None) or []
            for handler, ctx in pending:
                try:
                    handler(ctx)
                except Exception:
                    logger.exception(
                        "mutation_handler_failed",
                        extra={"model_name": ctx.model_name},
                    )

        def after_transaction_end(session: Session, transaction: SessionTransaction) -> None:
            # 커밋되지 않고 끝난 최상위 트랜잭션 (rollback, close)
            if transaction.parent is not None:
                return
            discarded = session.info.pop(key, None)
            if discarded:
                logger.info("mutations_discarded", extra={"count": len(discarded)})

        self._listen(Session, "after_commit", after_commit)
        self._listen(Session, "after_transaction_end", after_transaction_end)
        self._session_hooks = True

    def _listen(self, target: Any, identifier: str, fn: Callable[..., None]) -> None:
        if target is not Session:
            self._install_session_hooks()
        event.listen(target, identifier, fn)
        self._listeners.append((target, identifier, fn))
        logger.debug(
            "orm_hook_installed",
            extra={"target": target.__name__, "event": identifier},
        )

    def _model(self, model_name: str) -> type:
        try:
            return self._models[model_name]
        except KeyError:
            raise LookupError(f"unknown model '{model_name}'") from None


def automap_source(database_url: str) -> SqlAlchemySource:
    """기존 DB 스키마를 reflect 해서 SqlAlchemySource 생성.

    모델 이름은 테이블 이름이 됩니다.
    """
    engine = create_engine(database_url)
    base = automap_base()
    base.prepare(autoload_with=engine)
    models = list(base.classes)
    logger.info(
        "automap_source_ready",
        extra={"models": [model.__name__ for model in models]},
    )
    return SqlAlchemySource(sessionmaker(engine), models)
