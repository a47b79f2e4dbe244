"""
Shared pytest fixtures for linkindex tests.

Provides an in-memory gateway, a call-recording wrapper around it, and
document classes defined fresh per test so index declarations never leak
between tests.
"""

import pytest

from linkindex.document import Document
from linkindex.memory_store import MemoryGateway


class RecordingGateway:
    """
    Wraps a gateway and records every call as ``(method, args)``.

    Used to assert which storage operations a reconciliation issued.
    """

    def __init__(self, inner):
        self._inner = inner
        self.calls: list[tuple[str, tuple]] = []

    def __getattr__(self, name):
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        def recorder(*args, **kwargs):
            self.calls.append((name, args))
            return attr(*args, **kwargs)
        return recorder

    def count(self, *names: str) -> int:
        return sum(1 for name, _ in self.calls if name in names)

    def stored(self) -> list[tuple[str, str]]:
        """(bucket, key) of every stored object, in call order."""
        return [(args[0].bucket, args[0].key) for name, args in self.calls if name == "store"]

    def reset(self) -> None:
        self.calls.clear()


@pytest.fixture
def gateway():
    """Fresh in-memory gateway."""
    gw = MemoryGateway(batch_size=2)
    yield gw
    gw.close()


@pytest.fixture
def recorder(gateway):
    """Call-recording wrapper around the in-memory gateway."""
    return RecordingGateway(gateway)


@pytest.fixture
def box_classes(recorder):
    """(Box, CardboardBox): Box indexes ``shape``; CardboardBox shares its bucket."""

    class Box(Document, indexes=("shape",)):
        pass

    class CardboardBox(Box):
        pass

    Box.use(recorder)
    return Box, CardboardBox


@pytest.fixture
def Box(box_classes):
    return box_classes[0]
