"""
Finders for documents: by key, by whole bucket, and by indexed attribute.
"""

import functools
import logging
from typing import Any, Callable, Iterable, Optional

from .errors import DocumentNotFound, NotFoundError, UnknownFinderError
from .indexing import index_bucket_name
from .types import TYPE_FIELD, StoredObject, index_key

logger = logging.getLogger(__name__)

FINDER_PREFIX = "find_by_"


def _flatten(keys: Iterable) -> list[str]:
    """Accept ``find("a", "b")`` and ``find(["a", "b"])`` alike."""
    flat = []
    for key in keys:
        if isinstance(key, (list, tuple)):
            flat.extend(key)
        else:
            flat.append(key)
    return flat


def objects_by_indexed_attribute(gateway, bucket: str, attribute: str, value: Any) -> list[StoredObject]:
    """
    Objects in ``bucket`` linked from the index record for ``attribute = value``.

    A missing index record means no document holds the value and yields
    ``[]``; any other gateway error propagates.
    """
    try:
        record = gateway.get(index_bucket_name(bucket, attribute), index_key(value))
    except NotFoundError:
        return []
    walked = gateway.walk_links(record, bucket)
    return walked[0] if walked else []


class Finders:
    """Class-level lookup methods mixed into Document."""

    @classmethod
    def find(cls, *keys):
        """
        Retrieve one or more documents by key.

        ``find(key)`` returns the document or None. ``find(k1, k2, ...)`` and
        ``find([k1, k2, ...])`` return a list in request order, with None for
        each missing key. ``find()`` returns None.
        """
        keys = _flatten(keys)
        if not keys:
            return None
        if len(keys) == 1:
            return cls._find_one(keys[0])
        return [cls._find_one(key) for key in keys]

    @classmethod
    def find_or_raise(cls, *keys):
        """Like ``find``, but raise DocumentNotFound if any key is missing."""
        keys = _flatten(keys)
        found = cls.find(keys)
        results = found if isinstance(found, list) else [found]
        if not keys or any(doc is None for doc in results):
            raise DocumentNotFound(keys, results)
        return found

    @classmethod
    def all(cls, callback: Optional[Callable[[Any], None]] = None) -> list:
        """
        Every document in the bucket.

        Without a callback, returns a list. With one, keys are streamed
        from the gateway and each found document is passed to ``callback``
        as its batch arrives; the return value is then an empty list.
        Keys that disappear between listing and fetch are skipped.
        """
        gateway = cls.gateway()
        bucket = cls._require_meta().bucket

        if callback is not None:
            for batch in gateway.stream_keys(bucket):
                for key in batch:
                    doc = cls._find_one(key)
                    if doc is not None:
                        callback(doc)
            return []

        docs = []
        for key in gateway.list_keys(bucket):
            doc = cls._find_one(key)
            if doc is not None:
                docs.append(doc)
        return docs

    @classmethod
    def find_by_indexed_attribute(cls, attribute: str, value: Any) -> list:
        """Documents whose ``attribute`` equals ``value``, via the index record."""
        return [
            cls.instantiate(obj)
            for obj in objects_by_indexed_attribute(
                cls.gateway(), cls._require_meta().bucket, attribute, value,
            )
        ]

    # -------------------------------------------------------------------------
    # Dynamic finders
    # -------------------------------------------------------------------------

    @staticmethod
    def match_attribute_name(name: str) -> Optional[str]:
        """``find_by_shape`` -> ``shape``; None if ``name`` is not a finder name."""
        if name.startswith(FINDER_PREFIX) and len(name) > len(FINDER_PREFIX):
            return name[len(FINDER_PREFIX):]
        return None

    @classmethod
    def finder(cls, name: str) -> Callable:
        """Look up a registered ``find_by_<attribute>`` finder bound to this class."""
        meta = cls.meta
        fn = None
        if meta is not None and cls.match_attribute_name(name) is not None:
            fn = meta.finders.get(name)
        if fn is None:
            raise UnknownFinderError(cls.__name__, name)
        return functools.partial(fn, cls)

    @classmethod
    def dispatch(cls, name: str, *args, **kwargs):
        return cls.finder(name)(*args, **kwargs)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    @classmethod
    def _find_one(cls, key: str):
        try:
            obj = cls.gateway().get(cls._require_meta().bucket, key)
        except NotFoundError:
            logger.debug("No %s document at key %r", cls.__name__, key)
            return None
        return cls.instantiate(obj)

    @classmethod
    def instantiate(cls, obj: StoredObject):
        """
        Build a document from a stored object.

        The ``_type`` field picks the concrete class from the type registry;
        an absent or unknown tag falls back to ``cls``.
        """
        data = dict(obj.data or {})
        tag = data.pop(TYPE_FIELD, None)
        klass = cls._require_meta().types.resolve(tag, cls)
        data.pop("key", None)
        doc = klass(data, key=obj.key)
        doc._is_new = False
        doc._underlying = obj
        return doc
