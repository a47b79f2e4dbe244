"""
In-process storage gateway.

Keeps objects in a dict of buckets. Reads and writes go through copies so
callers see the same isolation they would against a real store: an object
fetched twice yields two independent instances, and nothing is visible until
stored.
"""

import logging
from typing import Iterator

from .errors import NotFoundError
from .types import StoredObject

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class MemoryGateway:
    """Dict-backed StorageGateway."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive: {batch_size}")
        self._batch_size = batch_size
        self._data: dict[str, dict[str, StoredObject]] = {}  # bucket -> {key -> object}

    def get(self, bucket: str, key: str) -> StoredObject:
        try:
            obj = self._data[bucket][key]
        except KeyError:
            raise NotFoundError(bucket, key) from None
        return obj.copy()

    def get_or_create(self, bucket: str, key: str) -> StoredObject:
        try:
            return self.get(bucket, key)
        except NotFoundError:
            return StoredObject(bucket=bucket, key=key)

    def store(self, obj: StoredObject) -> None:
        saved = obj.copy()
        saved.exists = True
        self._data.setdefault(obj.bucket, {})[obj.key] = saved
        obj.exists = True
        logger.debug("Stored %s/%s (%d links)", obj.bucket, obj.key, len(obj.links))

    def delete(self, bucket: str, key: str) -> bool:
        objects = self._data.get(bucket, {})
        if key in objects:
            del objects[key]
            return True
        return False

    def list_keys(self, bucket: str) -> list[str]:
        return list(self._data.get(bucket, {}).keys())

    def stream_keys(self, bucket: str) -> Iterator[list[str]]:
        keys = self.list_keys(bucket)
        for start in range(0, len(keys), self._batch_size):
            yield keys[start:start + self._batch_size]

    def walk_links(
        self,
        obj: StoredObject,
        bucket: str,
        keep: bool = True,
    ) -> list[list[StoredObject]]:
        found = []
        for link in obj.links:
            if link.bucket != bucket:
                continue
            try:
                found.append(self.get(link.bucket, link.key))
            except NotFoundError:
                logger.debug("Dangling link %s/%s -> %s/%s",
                             obj.bucket, obj.key, link.bucket, link.key)
        return [found]

    def close(self) -> None:
        self._data.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
