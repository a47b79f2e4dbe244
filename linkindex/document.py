"""
Documents: application records persisted through a storage gateway.

    class Box(Document, indexes=("shape",)):
        pass

    Box.use(MemoryGateway())
    box = Box(shape="square").save()
    Box.find(box.key)
    Box.find_by_shape("square")

Each document class carries a DocumentType (``cls.meta``) built when the
class is defined: its bucket, indexed attributes, finder registry and the
type registry shared with its subclasses. Subclasses live in their parent's
bucket and are told apart by the ``_type`` field.
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .errors import ConfigurationError
from .finders import Finders
from .indexing import Indexing
from .protocol import StorageGateway
from .types import TYPE_FIELD, StoredObject


# Irregular plurals, matched on the end of the name
_IRREGULAR_PLURALS = {
    "person": "people",
    "child": "children",
    "mouse": "mice",
    "goose": "geese",
}


def pluralize(name: str) -> str:
    """Lower-cased English plural of a class name: ``Box`` -> ``boxes``."""
    word = name.lower()
    for singular, plural in _IRREGULAR_PLURALS.items():
        if word.endswith(singular):
            return word[: -len(singular)] + plural
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    return word + "s"


class TypeRegistry:
    """Type tag -> document factory, shared by one document hierarchy."""

    def __init__(self):
        self._factories: dict[str, Callable[..., Any]] = {}

    def register(self, tag: str, factory: Callable[..., Any]) -> None:
        self._factories[tag] = factory

    def resolve(self, tag: Optional[str], default: Callable[..., Any]) -> Callable[..., Any]:
        """Factory for ``tag``, or ``default`` when the tag is absent or unknown."""
        if not isinstance(tag, str):
            return default
        return self._factories.get(tag, default)

    def tags(self) -> list[str]:
        return list(self._factories)


@dataclass
class DocumentType:
    """Per-class document configuration."""
    name: str
    bucket: str
    types: TypeRegistry
    indexed_attributes: list[str] = field(default_factory=list)
    finders: dict[str, Callable] = field(default_factory=dict)


class DocumentMeta(type):
    """Resolves ``find_by_<attribute>`` through the class's finder registry."""

    def __getattr__(cls, name):
        if cls.match_attribute_name(name) is not None:
            return cls.finder(name)
        raise AttributeError(f"type object {cls.__name__!r} has no attribute {name!r}")


class Document(Finders, Indexing, metaclass=DocumentMeta):
    """
    Base class for stored documents.

    Class keywords:
        bucket: Bucket name (default: pluralized, lower-cased class name;
            subclasses inherit their parent's)
        indexes: Attribute names to index
        type_name: Tag written to ``_type`` (default: class name)
    """

    meta: Optional[DocumentType] = None
    _gateway: Optional[StorageGateway] = None

    def __init_subclass__(
        cls,
        *,
        bucket: Optional[str] = None,
        indexes=(),
        type_name: Optional[str] = None,
        **kwargs,
    ):
        super().__init_subclass__(**kwargs)
        if isinstance(indexes, str):
            indexes = (indexes,)

        parent = next(
            (base.meta for base in cls.__mro__[1:] if getattr(base, "meta", None) is not None),
            None,
        )
        if parent is None:
            cls.meta = DocumentType(
                name=type_name or cls.__name__,
                bucket=bucket or pluralize(cls.__name__),
                types=TypeRegistry(),
            )
            inherited: list[str] = []
        else:
            cls.meta = DocumentType(
                name=type_name or cls.__name__,
                bucket=bucket or parent.bucket,
                types=parent.types,
            )
            inherited = list(parent.indexed_attributes)

        cls.meta.types.register(cls.meta.name, cls)
        for attribute in [*inherited, *indexes]:
            cls.index(attribute)

    def __init__(self, attributes: Optional[dict[str, Any]] = None, *, key: Optional[str] = None, **kwargs):
        self._require_meta()
        attrs = dict(attributes or {})
        attrs.update(kwargs)
        attrs.pop(TYPE_FIELD, None)
        if key is None:
            key = attrs.pop("key", None)
        self._key = key
        self._attributes = attrs
        self._is_new = True
        self._underlying: Optional[StoredObject] = None

    # -------------------------------------------------------------------------
    # Class configuration
    # -------------------------------------------------------------------------

    @classmethod
    def _require_meta(cls) -> DocumentType:
        if cls.meta is None:
            raise ConfigurationError(f"{cls.__name__} is abstract; define a subclass")
        return cls.meta

    @classmethod
    def use(cls, gateway: StorageGateway) -> None:
        """Attach a storage gateway to this class and its subclasses."""
        cls._gateway = gateway

    @classmethod
    def gateway(cls) -> StorageGateway:
        if cls._gateway is None:
            raise ConfigurationError(
                f"No storage gateway for {cls.__name__}; call {cls.__name__}.use(gateway)"
            )
        return cls._gateway

    # -------------------------------------------------------------------------
    # Attributes
    # -------------------------------------------------------------------------

    @property
    def key(self) -> Optional[str]:
        return self._key

    @key.setter
    def key(self, value: str) -> None:
        self._key = value

    @property
    def attributes(self) -> dict[str, Any]:
        return self._attributes

    @property
    def is_new(self) -> bool:
        return self._is_new

    def get(self, name: str, default: Any = None) -> Any:
        return self._attributes.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self._attributes[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self._attributes[name] = value

    def __getattr__(self, name):
        # Only reached when normal lookup fails
        attributes = self.__dict__.get("_attributes", {})
        if name in attributes:
            return attributes[name]
        if self.match_attribute_name(name) is not None:
            return type(self).finder(name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name, value):
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
        else:
            self._attributes[name] = value

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    @property
    def underlying_object(self) -> StoredObject:
        """The backing storage object, fetched or created on first use."""
        if self._key is None:
            self._key = uuid.uuid4().hex
        if self._underlying is None or self._underlying.key != self._key:
            self._underlying = self.gateway().get_or_create(self.meta.bucket, self._key)
        return self._underlying

    def reset_underlying_object(self) -> None:
        """Drop the cached backing object; the next access fetches it again."""
        self._underlying = None

    def save(self) -> "Document":
        """Store the document, then reconcile each indexed attribute."""
        obj = self.underlying_object
        obj.data = {**self._attributes, TYPE_FIELD: self.meta.name}
        self.store_underlying_object()
        self._is_new = False
        self.index_attributes()
        return self

    def __eq__(self, other):
        if not isinstance(other, Document):
            return NotImplemented
        if self is other:
            return True
        return (
            self._key is not None
            and self.meta.bucket == other.meta.bucket
            and self._key == other._key
        )

    def __hash__(self):
        return hash((self.meta.bucket, self._key))

    def __repr__(self):
        return f"<{type(self).__name__} {self._key!r} {self._attributes!r}>"
