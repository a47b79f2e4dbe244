"""
Pluggable storage gateway factory.

Creates a StorageGateway from configuration. Built-in backends are
``memory``, ``sqlite`` and ``riak``. External backends register via the
``linkindex.backends`` entry point group.

External backend packages provide a factory function::

    def create_gateway(config: StoreConfig) -> StorageGateway:
        ...

and register it in their pyproject.toml::

    [project.entry-points."linkindex.backends"]
    my-backend = "my_package.backend:create_gateway"
"""

import logging
from pathlib import Path
from typing import Optional

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .protocol import StorageGateway

logger = logging.getLogger(__name__)

BUILTIN_BACKENDS = ("memory", "sqlite", "riak")


def create_gateway(config: StoreConfig) -> StorageGateway:
    """
    Create a storage gateway from configuration.

    For other values than the built-in names, loads the backend via the
    ``linkindex.backends`` entry point group.
    """
    logger.debug("Creating %s gateway for %s", config.backend, config.path)
    if config.backend == "memory":
        from .memory_store import MemoryGateway
        return MemoryGateway(batch_size=config.batch_size)
    if config.backend == "sqlite":
        from .sqlite_store import SQLiteGateway
        return SQLiteGateway(config.db_path, batch_size=config.batch_size)
    if config.backend == "riak":
        from .riak_client import RiakGateway
        return RiakGateway(config.riak_url, timeout=config.riak_timeout)
    return _load_backend(config.backend, config)


def _load_backend(name: str, config: StoreConfig) -> StorageGateway:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="linkindex.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = list(BUILTIN_BACKENDS) + [ep.name for ep in eps]
    raise ValueError(
        f"Unknown backend: {name!r}. Available: {available}"
    )


def open_gateway(store_path: Optional[Path] = None) -> StorageGateway:
    """Load (or create) the store config at ``store_path`` and open its gateway."""
    path = Path(store_path) if store_path else get_default_store_path()
    return create_gateway(load_or_create_config(path))
