"""SQLAlchemy System of Record."""

from apps.cache_machine.infrastructure.persistence_sqla.source import (
    SqlAlchemySource,
    automap_source,
    instance_to_dict,
)

__all__ = ["SqlAlchemySource", "automap_source", "instance_to_dict"]
