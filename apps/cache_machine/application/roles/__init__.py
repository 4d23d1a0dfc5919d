"""Cache Machine Roles."""

from apps.cache_machine.application.roles.base import CacheMachine
from apps.cache_machine.application.roles.client import CacheClient
from apps.cache_machine.application.roles.local import LocalCache
from apps.cache_machine.application.roles.server import CacheServer

__all__ = ["CacheMachine", "CacheClient", "CacheServer", "LocalCache"]
