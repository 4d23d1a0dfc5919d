"""Messaging Infrastructure."""

from apps.cache_machine.infrastructure.messaging.kombu_bus import (
    KombuMessageBus,
    KombuSubscription,
    KombuTopic,
)

__all__ = ["KombuMessageBus", "KombuSubscription", "KombuTopic"]
