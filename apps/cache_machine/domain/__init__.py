"""Domain Layer."""

from apps.cache_machine.domain.enums import (
    MethodName,
    PrimingState,
    Role,
    TopicGranularity,
    WatchMode,
)
from apps.cache_machine.domain.exceptions import (
    CacheMachineError,
    CacheNotFoundError,
    ConfigurationError,
    MalformedRecordError,
    PrimingTimeoutError,
    TransportError,
)
from apps.cache_machine.domain.records import ChangeRecord, PrimingRequest, PrimingResponse, WatchSpec

__all__ = [
    # Enums
    "MethodName",
    "PrimingState",
    "Role",
    "TopicGranularity",
    "WatchMode",
    # Records
    "ChangeRecord",
    "PrimingRequest",
    "PrimingResponse",
    "WatchSpec",
    # Exceptions
    "CacheMachineError",
    "CacheNotFoundError",
    "ConfigurationError",
    "MalformedRecordError",
    "PrimingTimeoutError",
    "TransportError",
]
