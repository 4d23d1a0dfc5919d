"""Replication core: apply, publish, prime, dispatch."""

from apps.cache_machine.application.replication.apply import ApplyEngine
from apps.cache_machine.application.replication.dispatcher import EventDispatcher
from apps.cache_machine.application.replication.priming import PrimingClient, PrimingResponder
from apps.cache_machine.application.replication.publisher import (
    ChangePublisher,
    PublishResult,
    PublishStatus,
)

__all__ = [
    "ApplyEngine",
    "ChangePublisher",
    "EventDispatcher",
    "PrimingClient",
    "PrimingResponder",
    "PublishResult",
    "PublishStatus",
]
