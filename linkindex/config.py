"""
Configuration management for linkindex stores.

The configuration is stored as a TOML file in the store directory.
It selects the storage backend and its parameters.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

# tomli_w for writing TOML (tomllib is read-only)
import tomli_w


CONFIG_FILENAME = "linkindex.toml"
CONFIG_VERSION = 1

DEFAULT_BACKEND = "sqlite"
DEFAULT_RIAK_URL = "http://127.0.0.1:8098"
DEFAULT_TIMEOUT = 30.0
DEFAULT_BATCH_SIZE = 100


def get_default_store_path() -> Path:
    """Store directory: LINKINDEX_STORE_PATH, else ~/.linkindex."""
    store = os.environ.get("LINKINDEX_STORE_PATH")
    if store:
        return Path(store).expanduser()
    return Path.home() / ".linkindex"


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backend: str = DEFAULT_BACKEND

    # Riak HTTP backend
    riak_url: str = DEFAULT_RIAK_URL
    riak_timeout: float = DEFAULT_TIMEOUT

    # Keys per batch when streaming
    batch_size: int = DEFAULT_BATCH_SIZE

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database for the sqlite backend."""
        return self.path / "objects.db"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def _apply_env_overrides(config: StoreConfig) -> StoreConfig:
    """Environment variables win over the file."""
    backend = os.environ.get("LINKINDEX_BACKEND")
    if backend:
        config.backend = backend
    riak_url = os.environ.get("LINKINDEX_RIAK_URL")
    if riak_url:
        config.riak_url = riak_url
    return config


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    riak = data.get("riak", {})
    stream = data.get("stream", {})
    batch_size = int(stream.get("batch_size", DEFAULT_BATCH_SIZE))
    if batch_size < 1:
        raise ValueError(f"stream.batch_size must be positive: {batch_size}")

    config = StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        backend=store.get("backend", DEFAULT_BACKEND),
        riak_url=riak.get("url", DEFAULT_RIAK_URL),
        riak_timeout=float(riak.get("timeout", DEFAULT_TIMEOUT)),
        batch_size=batch_size,
    )
    return _apply_env_overrides(config)


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
        },
        "riak": {
            "url": config.riak_url,
            "timeout": config.riak_timeout,
        },
        "stream": {
            "batch_size": config.batch_size,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = StoreConfig(path=store_path)
    save_config(config)
    return _apply_env_overrides(config)
