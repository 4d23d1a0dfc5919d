"""Replication Records.

버스를 통해 오가는 메시지 단위입니다.

Wire format (JSON):
    ChangeRecord:
        {"modelName": str, "methodName": "create"|"update"|"delete"|"prime",
         "modelId": int|str, "data": object|null}
    PrimingRequest:
        {"responseChannel": str, "requestId": str,
         "models": {name: {"type": "cache"|"event", "fields": [str]?}}}
    PrimingResponse:
        {"requestId": str, "records": [ChangeRecord]}
        requestId가 없는 요청에는 ChangeRecord 배열로 응답
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from apps.cache_machine.domain.enums import MethodName, WatchMode
from apps.cache_machine.domain.exceptions import ConfigurationError, MalformedRecordError


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


@dataclass(frozen=True)
class ChangeRecord:
    """복제 단위. 레코드 하나에 대한 create/update/delete/prime 이벤트.

    Attributes:
        model_name: 모델 이름
        method_name: 변경 종류
        model_id: 레코드 식별자 (data.id가 있으면 그 값으로 해석됨)
        data: 레코드 페이로드 (delete는 None)
        version: 단조 증가 버전 (versioned_updates 사용 시에만 채워짐)
    """

    model_name: str
    method_name: MethodName
    model_id: Any
    data: dict[str, Any] | None = None
    version: int | None = None

    @property
    def event_name(self) -> str:
        """이벤트 디스패처 키 ("Model.method")."""
        return f"{self.model_name}.{self.method_name.value}"

    def to_dict(self) -> dict[str, Any]:
        """Wire format 변환."""
        body: dict[str, Any] = {
            "modelName": self.model_name,
            "methodName": self.method_name.value,
            "modelId": self.model_id,
            "data": self.data,
        }
        if self.version is not None:
            body["version"] = self.version
        return body

    @classmethod
    def from_dict(cls, payload: Any) -> ChangeRecord:
        """Wire format에서 생성.

        검증 순서: modelName → methodName → (data, modelId) 또는 delete의 modelId.

        Raises:
            MalformedRecordError: 필수 필드 누락 또는 알 수 없는 methodName
        """
        if not isinstance(payload, Mapping):
            raise MalformedRecordError("message data is required", payload)

        model_name = payload.get("modelName")
        if _is_missing(model_name):
            raise MalformedRecordError("modelName is required", payload)

        raw_method = payload.get("methodName")
        if _is_missing(raw_method):
            raise MalformedRecordError("methodName is required", payload)
        try:
            method = MethodName(raw_method)
        except ValueError:
            raise MalformedRecordError(f"unknown methodName '{raw_method}'", payload) from None

        data = payload.get("data")
        model_id = payload.get("modelId")

        if method.requires_data:
            if not isinstance(data, Mapping):
                raise MalformedRecordError("data is required", payload)
            # data.id가 있으면 우선
            if not _is_missing(data.get("id")):
                model_id = data["id"]
            if _is_missing(model_id):
                raise MalformedRecordError("model id is required", payload)
            data = dict(data)
        else:
            if _is_missing(model_id):
                raise MalformedRecordError("model id is required", payload)
            data = None

        if not isinstance(model_id, (int, str)) or isinstance(model_id, bool):
            raise MalformedRecordError("model id must be a number or string", payload)

        version = payload.get("version")
        return cls(
            model_name=str(model_name),
            method_name=method,
            model_id=model_id,
            data=data,
            version=version if isinstance(version, int) else None,
        )


@dataclass(frozen=True)
class WatchSpec:
    """모델 관심 선언.

    Attributes:
        model_name: 모델 이름
        mode: cache (전체 복제) / event (알림만)
        fields: 필드 projection (비어있으면 전체)
    """

    model_name: str
    mode: WatchMode = WatchMode.CACHE
    fields: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if _is_missing(self.model_name):
            raise ConfigurationError("model_name is required for watching models")

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {"type": self.mode.value}
        if self.fields:
            body["fields"] = list(self.fields)
        return body

    @classmethod
    def from_wire(cls, model_name: str, body: Mapping[str, Any] | None) -> WatchSpec:
        """요청 본문의 모델 항목에서 생성. type이 없으면 cache로 간주."""
        body = body or {}
        raw_mode = body.get("type") or WatchMode.CACHE.value
        try:
            mode = WatchMode(raw_mode)
        except ValueError:
            raise MalformedRecordError(f"unknown watch type '{raw_mode}'", body) from None
        fields = body.get("fields") or ()
        return cls(model_name=model_name, mode=mode, fields=tuple(fields))


@dataclass(frozen=True)
class PrimingRequest:
    """Priming 시작 요청.

    Attributes:
        models: 모델 이름 → WatchSpec
        response_channel: 응답을 받을 논리 토픽 이름 (None이면 공용 priming 토픽)
        request_id: 응답 상관관계 id (응답에 그대로 실려 돌아옴)
    """

    models: dict[str, WatchSpec] = field(default_factory=dict)
    response_channel: str | None = None
    request_id: str | None = None

    @property
    def cache_models(self) -> list[WatchSpec]:
        """실제 데이터를 조회해야 하는 cache 모드 모델."""
        return [spec for spec in self.models.values() if spec.mode is WatchMode.CACHE]

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "models": {name: spec.to_wire() for name, spec in self.models.items()},
        }
        if self.response_channel:
            body["responseChannel"] = self.response_channel
        if self.request_id:
            body["requestId"] = self.request_id
        return body

    @classmethod
    def from_dict(cls, payload: Any) -> PrimingRequest:
        """Raises:
        MalformedRecordError: models가 객체가 아님
        """
        if not isinstance(payload, Mapping):
            raise MalformedRecordError("priming request must be an object", payload)
        models = payload.get("models") or {}
        if not isinstance(models, Mapping):
            raise MalformedRecordError("models must be an object", payload)
        return cls(
            models={name: WatchSpec.from_wire(name, body) for name, body in models.items()},
            response_channel=payload.get("responseChannel") or None,
            request_id=payload.get("requestId") or None,
        )


@dataclass(frozen=True)
class PrimingResponse:
    """Priming 응답 배치.

    Attributes:
        records: wire format 레코드 목록 (검증은 ApplyEngine이 수행)
        request_id: 응답 대상 요청 id
    """

    records: list[Any] = field(default_factory=list)
    request_id: str | None = None

    def to_payload(self) -> Any:
        """요청 id가 있으면 envelope, 없으면 레코드 배열."""
        if self.request_id is None:
            return list(self.records)
        return {"requestId": self.request_id, "records": list(self.records)}

    @classmethod
    def from_payload(cls, payload: Any) -> PrimingResponse:
        """envelope, 배열, 단건 레코드를 모두 허용.

        Raises:
            MalformedRecordError: envelope의 records가 배열이 아님
        """
        if isinstance(payload, Mapping) and "records" in payload:
            records = payload["records"]
            if not isinstance(records, list):
                raise MalformedRecordError("records must be an array", payload)
            return cls(records=list(records), request_id=payload.get("requestId") or None)
        if isinstance(payload, list):
            return cls(records=list(payload))
        return cls(records=[payload])
