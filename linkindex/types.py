"""
Data types for link-indexed storage.

A stored object is a bucket/key pair carrying a data mapping and an ordered
list of links. Links are one-directional; a bidirectional relationship is two
links, one stored on each side.
"""

import copy
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote_plus


# Data field holding the document type tag
TYPE_FIELD = "_type"


@dataclass(frozen=True)
class Link:
    """
    A tagged pointer to ``bucket/key``.

    Frozen so links compare and hash by value: a link is removed from a
    link list by equality, not identity.
    """
    bucket: str
    key: str
    tag: str


@dataclass
class StoredObject:
    """
    A storage object as returned by a gateway.

    Attributes:
        bucket: Bucket (collection) name
        key: Primary key within the bucket
        data: Attribute mapping
        links: Ordered outgoing links
        exists: False for get-or-create placeholders that were never stored
    """
    bucket: str
    key: str
    data: dict[str, Any] = field(default_factory=dict)
    links: list[Link] = field(default_factory=list)
    exists: bool = False

    def to_link(self, tag: str) -> Link:
        """A link pointing at this object."""
        return Link(self.bucket, self.key, tag)

    def copy(self) -> "StoredObject":
        """Detached copy; mutating it does not touch the original."""
        return StoredObject(
            bucket=self.bucket,
            key=self.key,
            data=copy.deepcopy(self.data),
            links=list(self.links),
            exists=self.exists,
        )


def index_key(value: Any) -> str:
    """Deterministic index record key for an attribute value.

    SHA256 of the canonical JSON encoding, so ``"1"`` and ``1`` map to
    different keys while equal values always map to the same one.
    """
    canonical = json.dumps(
        value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def unescape_key(key: str) -> str:
    """URL-decode a key as stored in link metadata (``+`` is a space)."""
    return unquote_plus(key)
