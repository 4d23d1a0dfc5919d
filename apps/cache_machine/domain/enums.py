"""Domain Enums."""

from __future__ import annotations

from enum import Enum


class MethodName(str, Enum):
    """ChangeRecord 변경 종류."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PRIME = "prime"

    @property
    def requires_data(self) -> bool:
        """data 필드가 필요한 메서드인지 여부."""
        return self is not MethodName.DELETE


class WatchMode(str, Enum):
    """모델 감시 모드.

    - CACHE: 로컬 저장소에 전체 복제본 유지
    - EVENT: 이벤트 알림만 수신 (저장소 버킷 없음)
    """

    CACHE = "cache"
    EVENT = "event"


class Role(str, Enum):
    """Cache machine 역할."""

    SERVER = "server"
    CLIENT = "client"
    LOCAL = "local"


class TopicGranularity(str, Enum):
    """모델 변경 토픽 분할 단위.

    배포 단위로 하나만 선택해야 합니다. 서버와 클라이언트가 다른 값을 쓰면
    구독 매칭이 깨집니다.
    """

    SHARED = "shared"  # 단일 "models" 토픽
    MODEL = "model"  # 모델당 하나
    MODEL_METHOD = "model_method"  # (모델, 메서드)당 하나


class PrimingState(str, Enum):
    """클라이언트 priming 상태 머신."""

    IDLE = "idle"
    AWAITING_PRIME = "awaiting_prime"
    PRIMED = "primed"
    FAILED = "failed"
