"""Fill unset Fleet spec fields. Results are transient and never written back."""
from .models import (
    DATABASE_ENGINES,
    DEFAULT_DATABASE_TYPE,
    DatabaseConfig,
    ServiceConfig,
)

DEFAULT_REPLICAS = 1
DEFAULT_TAG = "latest"
DEFAULT_STORAGE_SIZE = "10Gi"


def default_service_config(key: str, config: ServiceConfig) -> ServiceConfig:
    """Return a copy of ``config`` with replicas, image and tag filled in."""
    updates = {}
    if config.replicas is None:
        updates["replicas"] = DEFAULT_REPLICAS
    if not config.image:
        updates["image"] = key
    if not config.tag:
        updates["tag"] = DEFAULT_TAG
    return config.model_copy(update=updates, deep=True)


def default_database_config(config: DatabaseConfig) -> DatabaseConfig:
    db_type = config.type or DEFAULT_DATABASE_TYPE
    updates = {"type": db_type}
    engine = DATABASE_ENGINES.get(db_type)
    if engine is not None:
        if not config.image:
            updates["image"] = engine.image
        if not config.tag:
            updates["tag"] = engine.tag
    if not config.storageSize:
        updates["storageSize"] = DEFAULT_STORAGE_SIZE
    return config.model_copy(update=updates, deep=True)
