"""Local Cache Infrastructure.

로컬 인메모리 복제본을 제공합니다.
"""

from apps.cache_machine.infrastructure.cache.local_store import LocalStore

__all__ = ["LocalStore"]
