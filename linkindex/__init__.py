"""
linkindex

Secondary indexes for key/value stores that only offer primary-key access
and per-object links. Each indexed (attribute, value) pair is an index
record linked to every document holding the value; saves keep the links
in step, lazily and without locks.

Quick Start:
    from linkindex import Document, MemoryGateway

    class Box(Document, indexes=("shape",)):
        pass

    Box.use(MemoryGateway())
    Box(shape="square").save()
    Box.find_by_shape("square")

CLI Usage:
    linkindex keys boxes
    linkindex show boxes <key>
    linkindex lookup boxes shape '"square"'

Environment Variables:
    LINKINDEX_STORE_PATH   - Override default store location (~/.linkindex)
    LINKINDEX_BACKEND      - Override the configured backend
    LINKINDEX_RIAK_URL     - Override the Riak base URL
"""

from .backend import create_gateway, open_gateway
from .document import Document, DocumentType, TypeRegistry, pluralize
from .errors import (
    ConfigurationError,
    DocumentNotFound,
    LinkIndexError,
    NotFoundError,
    TransportError,
    UnknownFinderError,
)
from .indexing import Index
from .memory_store import MemoryGateway
from .protocol import StorageGateway
from .types import Link, StoredObject, index_key

__version__ = "0.1.0"
__all__ = [
    "ConfigurationError",
    "Document",
    "DocumentNotFound",
    "DocumentType",
    "Index",
    "Link",
    "LinkIndexError",
    "MemoryGateway",
    "NotFoundError",
    "StorageGateway",
    "StoredObject",
    "TransportError",
    "TypeRegistry",
    "UnknownFinderError",
    "create_gateway",
    "index_key",
    "open_gateway",
    "pluralize",
]
