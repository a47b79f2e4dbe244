"""
Protocol definition for storage gateways.

The indexing core only needs primary-key access and per-object links:
- get / get_or_create / store / delete by bucket and key
- key listing, either as one list or as a stream of batches
- link walking from one object into a target bucket

Implemented by:
- MemoryGateway (in-process, tests and scratch use)
- SQLiteGateway (local file)
- RiakGateway (HTTP, Riak-style REST API)
"""

from typing import Iterator, Protocol, runtime_checkable

from .types import StoredObject


@runtime_checkable
class StorageGateway(Protocol):
    """
    Key/value store with link metadata.

    Objects returned by ``get`` are private copies; changes are only
    visible to other readers after ``store``.
    """

    # -- Single-object operations --

    def get(self, bucket: str, key: str) -> StoredObject:
        """Fetch an object. Raises NotFoundError when absent."""
        ...

    def get_or_create(self, bucket: str, key: str) -> StoredObject:
        """Fetch an object, or return an unsaved empty placeholder."""
        ...

    def store(self, obj: StoredObject) -> None:
        """Persist the object's data and full link list."""
        ...

    def delete(self, bucket: str, key: str) -> bool: ...

    # -- Key listing --

    def list_keys(self, bucket: str) -> list[str]: ...

    def stream_keys(self, bucket: str) -> Iterator[list[str]]:
        """Yield the bucket's keys in batches as they become available."""
        ...

    # -- Links --

    def walk_links(
        self,
        obj: StoredObject,
        bucket: str,
        keep: bool = True,
    ) -> list[list[StoredObject]]:
        """
        Follow ``obj``'s links into ``bucket``.

        Returns results grouped by depth; this layer only walks one depth.
        Targets that no longer exist are skipped.
        """
        ...

    def close(self) -> None: ...
