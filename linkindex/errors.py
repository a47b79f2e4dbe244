"""
Error types and error logging for linkindex.

Gateway failures are split into NotFoundError (recoverable, key absent) and
TransportError (everything else, always propagated). The CLI logs full stack
traces to a file while showing clean messages to users.
"""

import logging
import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from .config import get_default_store_path

logger = logging.getLogger(__name__)


class LinkIndexError(Exception):
    """Base class for linkindex errors."""


class ConfigurationError(LinkIndexError):
    """Missing or invalid configuration (e.g. a document class with no gateway)."""


class NotFoundError(LinkIndexError):
    """The gateway has no object at ``bucket/key``."""

    def __init__(self, bucket: str, key: str):
        self.bucket = bucket
        self.key = key
        super().__init__(f"Not found: {bucket}/{key}")


class TransportError(LinkIndexError):
    """Any gateway failure other than not-found."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class DocumentNotFound(LinkIndexError):
    """
    Raised by ``find_or_raise`` when requested documents cannot be found.

        try:
            Box.find_or_raise("badkey")
        except DocumentNotFound as e:
            print(e.keys)
    """

    def __init__(self, keys: Sequence[str], found: Sequence):
        keys = list(keys)
        if not keys:
            self.keys: list[str] = []
            message = "Couldn't find document without a key"
        elif len(keys) == 1:
            self.keys = keys
            message = f"Couldn't find document with key: {keys[0]}"
        else:
            self.keys = [k for k, doc in zip(keys, found) if doc is None]
            message = f"Couldn't find documents with keys: {', '.join(self.keys)}"
        super().__init__(message)


class UnknownFinderError(AttributeError):
    """A ``find_by_<attribute>`` call for an attribute that is not indexed."""

    def __init__(self, owner: str, name: str):
        super().__init__(f"{owner} has no finder {name!r} (attribute is not indexed)")
        # AttributeError.__init__ resets .name
        self.owner = owner
        self.name = name


ERROR_LOG_NAME = "linkindex-errors.log"


def _format_entry(exc: BaseException, context: str) -> str:
    header = f"[{datetime.now(timezone.utc).isoformat()}]"
    if context:
        header += f" {context}"
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"\n{'=' * 60}\n{header}\n{trace}"


def log_exception(exc: BaseException, context: str = "") -> Path:
    """
    Append ``exc`` and its traceback to the store's error log.

    The log lives in the store directory (see ``get_default_store_path``)
    and is created owner-readable only. An unwritable log is skipped.

    Returns:
        Path to the error log file
    """
    log_path = get_default_store_path() / ERROR_LOG_NAME
    entry = _format_entry(exc, context)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(entry)
    except OSError as e:
        logger.debug("Could not write error log %s: %s", log_path, e)
    return log_path
