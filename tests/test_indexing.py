"""
Tests for index reconciliation.

An indexed attribute is a link pair: document -> index record and index
record -> document. Every save checks the pair against the live attribute
value and rewrites it when stale:
- missing either half, or pointing at another value's record, is stale
- refreshing a current pair writes nothing
- a failed refresh is repaired by the next save
"""

from unittest.mock import MagicMock, PropertyMock, call, patch

import pytest

from linkindex.errors import TransportError
from linkindex.indexing import Index
from linkindex.types import Link, StoredObject, index_key


class FailingGateway:
    """Gateway wrapper that raises on ``store`` into one bucket while armed."""

    def __init__(self, inner, bucket: str):
        self._inner = inner
        self._bucket = bucket
        self.fail_store = False

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def store(self, obj):
        if self.fail_store and obj.bucket == self._bucket:
            raise TransportError("simulated store failure", status=503)
        return self._inner.store(obj)


def _index_record(gateway, value, bucket="boxes_by_shape"):
    return gateway.get(bucket, index_key(value))


def _doc_links(gateway, box):
    return gateway.get("boxes", box.key).links


# ---------------------------------------------------------------------------
# Index in isolation (mocked document)
# ---------------------------------------------------------------------------

class TestIndexUnit:
    """The Index view against a stub document."""

    @pytest.fixture
    def document(self):
        document = MagicMock()
        document.meta.bucket = "boxes"
        document.key = "b1"
        return document

    @pytest.fixture
    def index(self, document):
        return Index(document, "field")

    def test_find_builds_an_index(self, document):
        index = Index.find(document, "field")
        assert isinstance(index, Index)
        assert index.document is document
        assert index.attribute == "field"

    def test_link_to_index_comes_from_document(self, document, index):
        document.find_link_to_index.return_value = "link_to_index"
        assert index.link_to_index == "link_to_index"
        document.find_link_to_index.assert_called_once_with("field")

    def test_attribute_value(self, document, index):
        document.attributes = {"field": "bob"}
        assert index.attribute_value == "bob"
        assert index.hashed_attribute_value == index_key("bob")

    def test_relation_and_bucket(self, index):
        assert index.relation == "boxes_by_field_index"
        assert index.index_bucket == "boxes_by_field"

    def test_no_link_to_index_means_no_record_and_no_gateway_call(self, document, index):
        document.find_link_to_index.return_value = None
        assert index.linked_index_record is None
        assert index.link_to_document is None
        document.gateway.return_value.get.assert_not_called()

    def test_link_to_document_found_in_linked_record(self, document, index):
        document.find_link_to_index.return_value = Link("boxes_by_field", "abc", "boxes_by_field_index")
        record = StoredObject("boxes_by_field", "abc", links=[
            Link("boxes", "other", "boxes_by_field_index"),
            Link("boxes", "b1", "boxes_by_field_index"),
        ])
        document.gateway.return_value.get.return_value = record
        assert index.link_to_document == Link("boxes", "b1", "boxes_by_field_index")
        document.gateway.return_value.get.assert_called_once_with("boxes_by_field", "abc")

    def test_link_to_document_ignores_other_buckets(self, document, index):
        document.find_link_to_index.return_value = Link("boxes_by_field", "abc", "rel")
        record = StoredObject("boxes_by_field", "abc", links=[Link("crates", "b1", "rel")])
        document.gateway.return_value.get.return_value = record
        assert index.link_to_document is None

    @pytest.mark.parametrize("linked,changed,stale", [
        (False, True, True),
        (False, False, True),
        (True, True, True),
        (True, False, False),
    ])
    def test_staleness(self, index, linked, changed, stale):
        with patch.object(Index, "is_linked", new_callable=PropertyMock, return_value=linked), \
             patch.object(Index, "attribute_value_changed", new_callable=PropertyMock, return_value=changed):
            assert index.is_stale is stale

    @pytest.mark.parametrize("to_index,to_document,linked", [
        (True, True, True),
        (False, True, False),
        (True, False, False),
    ])
    def test_linked_needs_both_halves(self, index, to_index, to_document, linked):
        index.__dict__["link_to_index"] = "link" if to_index else None
        index.__dict__["link_to_document"] = "link" if to_document else None
        assert index.is_linked is linked

    def test_attribute_value_changed_compares_unescaped_key(self, index):
        index.__dict__["link_to_index"] = Link("boxes_by_field", "marmite+and+toast", "rel")
        with patch.object(Index, "hashed_attribute_value", new_callable=PropertyMock,
                          return_value="marmite and toast"):
            assert index.attribute_value_changed is False
        with patch.object(Index, "hashed_attribute_value", new_callable=PropertyMock,
                          return_value="toast and butter"):
            assert index.attribute_value_changed is True

    def test_refresh_when_stale_runs_steps_in_order(self, index):
        steps = MagicMock()
        with patch.object(Index, "is_stale", new_callable=PropertyMock, return_value=True), \
             patch.object(Index, "index_record", new_callable=PropertyMock):
            index.__dict__["link_to_index"] = None
            index.delete = steps.delete
            index.store_deletions = steps.store_deletions
            index.link = steps.link
            index.store = steps.store
            assert index.refresh() is True
        assert steps.mock_calls == [
            call.delete(), call.store_deletions(), call.link(), call.store(),
        ]

    def test_refresh_when_current_does_nothing(self, index):
        steps = MagicMock()
        with patch.object(Index, "is_stale", new_callable=PropertyMock, return_value=False):
            index.delete = steps.delete
            index.store_deletions = steps.store_deletions
            index.link = steps.link
            index.store = steps.store
            assert index.refresh() is False
        assert steps.mock_calls == []

    def test_failed_refresh_drops_cached_object_and_reraises(self, document, index):
        with patch.object(Index, "is_stale", new_callable=PropertyMock, return_value=True):
            index.__dict__["link_to_index"] = None
            index.delete = MagicMock()
            index.store_deletions = MagicMock(side_effect=TransportError("down", status=503))
            index.link = MagicMock()
            with pytest.raises(TransportError):
                index.refresh()
        document.reset_underlying_object.assert_called_once_with()
        index.link.assert_not_called()

    def test_delete_removes_both_halves(self, document, index):
        to_document = Link("boxes", "b1", "rel")
        to_index = Link("boxes_by_field", "abc", "rel")
        record = StoredObject("boxes_by_field", "abc", links=[to_document, Link("boxes", "b2", "rel")])
        document_links = [to_index, Link("elsewhere", "x", "other")]
        document.underlying_links = document_links
        index.__dict__.update(
            link_to_index=to_index, linked_index_record=record, link_to_document=to_document,
        )

        index.delete()

        assert record.links == [Link("boxes", "b2", "rel")]
        assert document_links == [Link("elsewhere", "x", "other")]

    def test_delete_without_record_only_touches_document(self, document, index):
        to_index = Link("boxes_by_field", "gone", "rel")
        document_links = [to_index]
        document.underlying_links = document_links
        index.__dict__.update(link_to_index=to_index, linked_index_record=None, link_to_document=None)

        index.delete()
        index.store_deletions()

        assert document_links == []
        document.gateway.return_value.store.assert_not_called()
        document.store_underlying_object.assert_called_once_with()

    def test_link_adds_both_halves(self, document, index):
        record = StoredObject("boxes_by_field", "abc")
        document_links = []
        document.underlying_links = document_links
        document.to_link_from_underlying.return_value = Link("boxes", "b1", "boxes_by_field_index")
        index.__dict__["index_record"] = record

        index.link()

        document.to_link_from_underlying.assert_called_once_with("boxes_by_field_index")
        assert record.links == [Link("boxes", "b1", "boxes_by_field_index")]
        assert document_links == [Link("boxes_by_field", "abc", "boxes_by_field_index")]

    def test_link_does_not_duplicate(self, document, index):
        to_document = Link("boxes", "b1", "boxes_by_field_index")
        record = StoredObject("boxes_by_field", "abc", links=[to_document])
        document_links = [record.to_link("boxes_by_field_index")]
        document.underlying_links = document_links
        document.to_link_from_underlying.return_value = to_document
        index.__dict__["index_record"] = record

        index.link()

        assert record.links == [to_document]
        assert len(document_links) == 1

    def test_store_writes_record_then_document(self, document, index):
        record = StoredObject("boxes_by_field", "abc")
        index.__dict__["index_record"] = record
        index.store()
        document.gateway.return_value.store.assert_called_once_with(record)
        document.store_underlying_object.assert_called_once_with()


# ---------------------------------------------------------------------------
# Reconciliation against an in-memory store
# ---------------------------------------------------------------------------

class TestReconciliation:
    """Saves keep the link pair in step with the attribute value."""

    def test_first_save_links_both_ways(self, Box, gateway):
        box = Box(shape="square").save()

        record = _index_record(gateway, "square")
        assert record.links == [Link("boxes", box.key, "boxes_by_shape_index")]
        assert Link("boxes_by_shape", index_key("square"), "boxes_by_shape_index") in _doc_links(gateway, box)

    def test_value_change_moves_links(self, Box, gateway):
        box = Box(shape="square").save()
        box.shape = "round"
        box.save()

        old = _index_record(gateway, "square")
        new = _index_record(gateway, "round")
        assert all(link.key != box.key for link in old.links)
        assert new.links == [Link("boxes", box.key, "boxes_by_shape_index")]

        doc_links = _doc_links(gateway, box)
        assert Link("boxes_by_shape", index_key("round"), "boxes_by_shape_index") in doc_links
        assert Link("boxes_by_shape", index_key("square"), "boxes_by_shape_index") not in doc_links

    def test_revert_reuses_original_record(self, Box, gateway):
        box = Box(shape="square").save()
        box.shape = "round"
        box.save()
        box.shape = "square"
        box.save()

        assert _index_record(gateway, "square").links == [
            Link("boxes", box.key, "boxes_by_shape_index"),
        ]
        assert _index_record(gateway, "round").links == []
        index_links = [l for l in _doc_links(gateway, box) if l.bucket == "boxes_by_shape"]
        assert index_links == [Link("boxes_by_shape", index_key("square"), "boxes_by_shape_index")]

    def test_shared_value_keeps_other_members(self, Box, gateway):
        first = Box(shape="square").save()
        second = Box(shape="square").save()
        first.shape = "round"
        first.save()

        assert _index_record(gateway, "square").links == [
            Link("boxes", second.key, "boxes_by_shape_index"),
        ]

    def test_refresh_of_current_pair_writes_nothing(self, Box, recorder):
        box = Box(shape="square").save()
        recorder.reset()

        assert Index.find(box, "shape").refresh() is False
        assert Index.find(box, "shape").refresh() is False
        assert recorder.count("store", "delete") == 0

    def test_unchanged_save_only_stores_document(self, Box, recorder):
        box = Box(shape="square").save()
        recorder.reset()

        box.save()

        assert recorder.stored() == [("boxes", box.key)]

    def test_stale_refresh_commits_deletions_before_linking(self, Box, recorder):
        box = Box(shape="square").save()
        box.shape = "round"
        recorder.reset()

        box.save()

        assert recorder.stored() == [
            ("boxes", box.key),                               # the save itself
            ("boxes_by_shape", index_key("square")),          # old record, link removed
            ("boxes", box.key),                               # document, link removed
            ("boxes_by_shape", index_key("round")),           # new record, link added
            ("boxes", box.key),                               # document, link added
        ]

    def test_missing_back_link_is_repaired(self, Box, gateway):
        box = Box(shape="square").save()
        record = _index_record(gateway, "square")
        record.links.clear()
        gateway.store(record)

        assert Index.find(box, "shape").is_stale
        box.save()

        assert _index_record(gateway, "square").links == [
            Link("boxes", box.key, "boxes_by_shape_index"),
        ]

    def test_deleted_index_record_is_recreated(self, Box, gateway):
        box = Box(shape="square").save()
        gateway.delete("boxes_by_shape", index_key("square"))

        box.save()

        assert _index_record(gateway, "square").links == [
            Link("boxes", box.key, "boxes_by_shape_index"),
        ]
        index_links = [l for l in _doc_links(gateway, box) if l.bucket == "boxes_by_shape"]
        assert len(index_links) == 1

    def test_failed_refresh_heals_on_next_save(self, Box, gateway):
        failing = FailingGateway(gateway, "boxes_by_shape")
        Box.use(failing)
        box = Box(shape="square").save()
        box.shape = "round"

        failing.fail_store = True
        with pytest.raises(TransportError):
            box.save()

        failing.fail_store = False
        box.save()

        assert _index_record(gateway, "round").links == [
            Link("boxes", box.key, "boxes_by_shape_index"),
        ]
        assert all(link.key != box.key for link in _index_record(gateway, "square").links)
        assert Box.find_by_shape("round") == [box]
        assert Box.find_by_shape("square") == []

    def test_missing_attribute_indexes_as_none(self, Box, gateway):
        box = Box().save()
        assert _index_record(gateway, None).links == [Link("boxes", box.key, "boxes_by_shape_index")]
        assert Box.find_by_shape(None) == [box]

    def test_every_indexed_attribute_is_reconciled(self, recorder):
        from linkindex.document import Document

        class Crate(Document, indexes=("size", "color")):
            pass

        Crate.use(recorder)
        crate = Crate(size=3, color="red").save()

        buckets = [bucket for bucket, _ in recorder.stored() if bucket != "crates"]
        assert buckets == ["crates_by_size", "crates_by_color"]
        assert Crate.find_by_size(3) == [crate]
        assert Crate.find_by_color("red") == [crate]
        assert Crate.find_by_size("3") == []
