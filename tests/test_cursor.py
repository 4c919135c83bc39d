"""Unit tests for formbuilder.storage.cursor — sort parsing and keyset pages."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from formbuilder.engine.errors import FormBuilderValidationError
from formbuilder.storage.cursor import (
    SortSpec,
    decode_cursor,
    encode_cursor,
    paginate,
    parse_sort,
)

BASE = datetime(2026, 1, 1, tzinfo=timezone.utc)


@dataclass
class Item:
    id: str
    created_on: datetime
    name: str = ""


def _items(n):
    return [Item(id=f"i{k:02d}", created_on=BASE + timedelta(minutes=k)) for k in range(n)]


class TestParseSort:
    def test_default(self):
        assert parse_sort(None, ["created_on"], "-created_on") == SortSpec("created_on", True)

    def test_ascending_and_list_form(self):
        assert parse_sort("created_on", ["created_on"], "-created_on").descending is False
        assert parse_sort(["-created_on"], ["created_on"], "created_on").descending is True

    def test_unknown_field(self):
        with pytest.raises(FormBuilderValidationError):
            parse_sort("password", ["created_on"], "-created_on")

    def test_str(self):
        assert str(SortSpec("saved_on", True)) == "-saved_on"


class TestCursorEncoding:
    def test_datetime_value(self):
        key = (BASE, "i01")
        assert decode_cursor(encode_cursor(key)) == key

    def test_malformed(self):
        with pytest.raises(FormBuilderValidationError):
            decode_cursor("not-a-cursor!!")


class TestPaginate:
    def test_walk_all_pages(self):
        items = _items(5)
        spec = SortSpec("created_on", False)

        seen, after = [], None
        while True:
            page, meta = paginate(items, spec, 2, after)
            seen.extend(i.id for i in page)
            assert meta.total_count == 5
            if not meta.has_more_items:
                assert meta.cursor is None
                break
            after = meta.cursor
        assert seen == [i.id for i in items]

    def test_descending(self):
        page, meta = paginate(_items(3), SortSpec("created_on", True), 2)
        assert [i.id for i in page] == ["i02", "i01"]
        assert meta.has_more_items is True

    def test_ties_broken_by_id(self):
        items = [Item(id=i, created_on=BASE) for i in ("b", "a", "c")]
        spec = SortSpec("created_on", False)
        page, meta = paginate(items, spec, 2)
        assert [i.id for i in page] == ["a", "b"]
        page, _ = paginate(items, spec, 2, meta.cursor)
        assert [i.id for i in page] == ["c"]

    def test_inserts_between_pages_do_not_duplicate(self):
        items = _items(4)
        spec = SortSpec("created_on", True)
        first, meta = paginate(items, spec, 2)

        items.append(Item(id="new", created_on=BASE + timedelta(hours=1)))
        second, _ = paginate(items, spec, 2, meta.cursor)
        assert not {i.id for i in first} & {i.id for i in second}
        assert [i.id for i in second] == ["i01", "i00"]

    def test_cursor_from_other_sort_rejected(self):
        items = [Item(id=f"i{k}", created_on=BASE, name=f"n{k}") for k in range(3)]
        _, meta = paginate(items, SortSpec("name", False), 1)
        with pytest.raises(FormBuilderValidationError):
            paginate(items, SortSpec("created_on", False), 1, meta.cursor)

    def test_empty(self):
        page, meta = paginate([], SortSpec("created_on", False), 10)
        assert page == []
        assert meta.total_count == 0
        assert meta.has_more_items is False
