"""
Attribute indexes maintained as link pairs.

For every indexed attribute a document links to one *index record*, keyed
by the hash of the attribute value in the bucket ``<bucket>_by_<attribute>``,
and that index record links back to every document holding the value:

    boxes/b1  --boxes_by_shape_index-->  boxes_by_shape/<hash("square")>
    boxes/b1  <--boxes_by_shape_index--  boxes_by_shape/<hash("square")>

Declaring an index::

    class Email(Document, indexes=("sender",)):
        pass

Every save reconciles each indexed attribute. There is no locking: a
failed or raced reconciliation leaves a pair that the next save sees as
stale and repairs.
"""

import logging
from functools import cached_property
from typing import Any, Optional

from .errors import NotFoundError
from .types import Link, StoredObject, index_key, unescape_key

logger = logging.getLogger(__name__)


def index_bucket_name(bucket: str, attribute: str) -> str:
    """Bucket holding the index records for ``attribute``."""
    return f"{bucket}_by_{attribute}"


def index_relation(bucket: str, attribute: str) -> str:
    """Tag carried by both links of an index pair."""
    return f"{bucket}_by_{attribute}_index"


def _discard(links: list[Link], link: Link) -> None:
    """Remove every occurrence of ``link`` in place."""
    links[:] = [existing for existing in links if existing != link]


class Indexing:
    """Index declaration and the link/store hooks the reconciler uses."""

    @classmethod
    def index(cls, attribute: str) -> None:
        """Declare ``attribute`` as indexed and register its finder."""
        meta = cls._require_meta()
        if attribute in meta.indexed_attributes:
            return
        meta.indexed_attributes.append(attribute)
        meta.finders[f"find_by_{attribute}"] = _index_finder(attribute)

    @classmethod
    def indexed_attributes(cls) -> list[str]:
        return list(cls._require_meta().indexed_attributes)

    @classmethod
    def attribute_indexed(cls, attribute: Optional[str]) -> bool:
        return attribute in cls._require_meta().indexed_attributes

    @classmethod
    def plural_name(cls) -> str:
        return cls._require_meta().bucket

    def index_bucket_name(self, attribute: str) -> str:
        return index_bucket_name(self.meta.bucket, attribute)

    def find_link_to_index(self, attribute: str) -> Optional[Link]:
        """First link from this document into the attribute's index bucket."""
        bucket = self.index_bucket_name(attribute)
        return next((link for link in self.underlying_links if link.bucket == bucket), None)

    def index_attributes(self) -> None:
        """Reconcile every indexed attribute, in declaration order."""
        for attribute in self.meta.indexed_attributes:
            Index.find(self, attribute).refresh()

    def store_underlying_object(self) -> None:
        self.gateway().store(self.underlying_object)

    @property
    def underlying_links(self) -> list[Link]:
        return self.underlying_object.links

    def to_link_from_underlying(self, relation: str) -> Link:
        return self.underlying_object.to_link(relation)


def _index_finder(attribute: str):
    def finder(cls, value: Any):
        return cls.find_by_indexed_attribute(attribute, value)
    finder.__name__ = f"find_by_{attribute}"
    return finder


class Index:
    """
    The link pair between one document and one indexed attribute.

    Not stored; a view over links already on the document and its index
    record. Lookups are cached for the life of the instance, which is one
    reconciliation.
    """

    def __init__(self, document, attribute: str):
        self.document = document
        self.attribute = attribute

    @classmethod
    def find(cls, document, attribute: str) -> "Index":
        return cls(document, attribute)

    @property
    def gateway(self):
        return self.document.gateway()

    # -------------------------------------------------------------------------
    # Current linkage
    # -------------------------------------------------------------------------

    @cached_property
    def link_to_index(self) -> Optional[Link]:
        return self.document.find_link_to_index(self.attribute)

    @cached_property
    def linked_index_record(self) -> Optional[StoredObject]:
        """The index record ``link_to_index`` points at, if it still exists."""
        link = self.link_to_index
        if link is None:
            return None
        try:
            return self.gateway.get(link.bucket, unescape_key(link.key))
        except NotFoundError:
            return None

    @cached_property
    def link_to_document(self) -> Optional[Link]:
        record = self.linked_index_record
        if record is None:
            return None
        bucket = self.document.meta.bucket
        key = self.document.key
        return next(
            (link for link in record.links if link.key == key and link.bucket == bucket),
            None,
        )

    # -------------------------------------------------------------------------
    # Target linkage
    # -------------------------------------------------------------------------

    @property
    def attribute_value(self) -> Any:
        return self.document.attributes.get(self.attribute)

    @property
    def hashed_attribute_value(self) -> str:
        return index_key(self.attribute_value)

    @property
    def index_bucket(self) -> str:
        return index_bucket_name(self.document.meta.bucket, self.attribute)

    @property
    def relation(self) -> str:
        return index_relation(self.document.meta.bucket, self.attribute)

    @cached_property
    def index_record(self) -> StoredObject:
        """Index record for the current value, created unsaved if missing."""
        return self.gateway.get_or_create(self.index_bucket, self.hashed_attribute_value)

    # -------------------------------------------------------------------------
    # Staleness
    # -------------------------------------------------------------------------

    @property
    def is_linked(self) -> bool:
        return self.link_to_index is not None and self.link_to_document is not None

    @property
    def attribute_value_changed(self) -> bool:
        if self.link_to_index is None:
            return True
        return unescape_key(self.link_to_index.key) != self.hashed_attribute_value

    @property
    def is_stale(self) -> bool:
        return not self.is_linked or self.attribute_value_changed

    # -------------------------------------------------------------------------
    # Repair
    # -------------------------------------------------------------------------

    def refresh(self) -> bool:
        """
        Bring the link pair in line with the attribute value.

        Does nothing (and writes nothing) when the pair is current.
        Otherwise drops the old pair, commits, then links the document to
        the index record for the current value and commits again. The old
        and new index records may be the same object, so the new one is
        fetched only after the deletions are stored.

        Returns:
            True if links were rewritten
        """
        if not self.is_stale:
            return False

        old_key = self.link_to_index.key if self.link_to_index is not None else None
        try:
            self.delete()
            self.store_deletions()
            self.__dict__.pop("index_record", None)
            self.link()
            self.store()
        except Exception as e:
            # In-memory links no longer match storage; reread them on next save
            self.document.reset_underlying_object()
            logger.warning(
                "Reindex of %s/%s %s failed, will retry on next save: %s",
                self.document.meta.bucket, self.document.key, self.attribute, e,
            )
            raise

        logger.debug(
            "Reindexed %s/%s %s: %s -> %s",
            self.document.meta.bucket, self.document.key, self.attribute,
            old_key, self.index_record.key,
        )
        return True

    def delete(self) -> None:
        record = self.linked_index_record
        if record is not None and self.link_to_document is not None:
            _discard(record.links, self.link_to_document)
        if self.link_to_index is not None:
            _discard(self.document.underlying_links, self.link_to_index)

    def store_deletions(self) -> None:
        if self.linked_index_record is not None:
            self.gateway.store(self.linked_index_record)
        self.document.store_underlying_object()

    def link(self) -> None:
        record = self.index_record
        to_document = self.document.to_link_from_underlying(self.relation)
        if to_document not in record.links:
            record.links.append(to_document)
        to_index = record.to_link(self.relation)
        if to_index not in self.document.underlying_links:
            self.document.underlying_links.append(to_index)

    def store(self) -> None:
        self.gateway.store(self.index_record)
        self.document.store_underlying_object()
