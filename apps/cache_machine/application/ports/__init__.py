"""Application Ports."""

from apps.cache_machine.application.ports.message_bus import (
    ErrorHandler,
    MessageBus,
    MessageHandler,
    Subscription,
    Topic,
)
from apps.cache_machine.application.ports.system_of_record import (
    MutationContext,
    MutationHandler,
    SystemOfRecord,
)

__all__ = [
    "ErrorHandler",
    "MessageBus",
    "MessageHandler",
    "Subscription",
    "Topic",
    "MutationContext",
    "MutationHandler",
    "SystemOfRecord",
]
