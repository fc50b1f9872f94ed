"""
Unit tests for the cursor codec and pagination.

Tests cover:
- Cursor encoding and decoding
- Invalid and foreign cursors
- Paging without overlap or gaps
- Page size defaults and bounds
"""

import base64
import json

import pytest
from entgen.errors import InvalidCursorError
from entgen.plan.cursor import decode_cursor, encode_cursor, page_size, paginate
from tests.builders import make_settings

ROWS = [{"id": i, "name": f"user-{i}"} for i in range(1, 8)]


def forged(key, type_name="User", order_by=("id",)):
    """A cursor with the right type and ordering but an arbitrary key."""
    payload = json.dumps({"t": type_name, "o": list(order_by), "k": key}).encode()
    return base64.urlsafe_b64encode(payload).decode().rstrip("=")


class TestCursorCodec:
    """Tests for encode_cursor and decode_cursor."""

    def test_cursor_is_url_safe(self):
        """Cursors use the URL-safe alphabet without padding."""
        cursor = encode_cursor("User", ["id"], [1])

        assert "=" not in cursor
        assert "+" not in cursor and "/" not in cursor

    def test_decode_returns_key(self):
        """Decoding returns the key values."""
        cursor = encode_cursor("Post", ["created_at", "id"], ["2024-01-01", 9])

        assert decode_cursor(cursor, "Post", ["created_at", "id"]) == ("2024-01-01", 9)

    def test_payload_format(self):
        """The payload is compact JSON with type, ordering and key."""
        cursor = encode_cursor("User", ["id"], [3])
        raw = base64.urlsafe_b64decode(cursor + "=" * (-len(cursor) % 4))

        assert json.loads(raw) == {"t": "User", "o": ["id"], "k": [3]}

    @pytest.mark.parametrize("cursor", ["", "!!!", "bm90IGpzb24"])
    def test_malformed_cursor(self, cursor):
        """Undecodable cursors are rejected."""
        with pytest.raises(InvalidCursorError):
            decode_cursor(cursor, "User", ["id"])

    def test_wrong_shape(self):
        """Decodable JSON of another shape is rejected."""
        cursor = base64.urlsafe_b64encode(b'{"id": 1}').decode().rstrip("=")

        with pytest.raises(InvalidCursorError, match="unexpected shape"):
            decode_cursor(cursor, "User", ["id"])

    def test_foreign_type(self):
        """A cursor issued for another type is rejected."""
        cursor = encode_cursor("Post", ["id"], [1])

        with pytest.raises(InvalidCursorError, match="belongs to type 'Post'"):
            decode_cursor(cursor, "User", ["id"])

    def test_foreign_ordering(self):
        """A cursor issued for another ordering is rejected."""
        cursor = encode_cursor("User", ["name"], ["ada"])

        with pytest.raises(InvalidCursorError, match="different ordering"):
            decode_cursor(cursor, "User", ["id"])

    def test_key_length_mismatch(self):
        """The key must have one value per ordering column."""
        cursor = encode_cursor("User", ["id"], [1, 2])

        with pytest.raises(InvalidCursorError, match="does not match"):
            decode_cursor(cursor, "User", ["id"])

    @pytest.mark.parametrize("key", [[None], [{"a": 1}], [[1, 2]]])
    def test_non_scalar_key(self, key):
        """Key values must be JSON scalars."""
        with pytest.raises(InvalidCursorError, match="non-scalar"):
            decode_cursor(forged(key), "User", ["id"])


class TestPaginate:
    """Tests for forward pagination."""

    def test_first_page(self):
        """The first page holds the first rows and reports more."""
        page = paginate(ROWS, "User", ["id"], first=3)

        assert [n["id"] for n in page.nodes] == [1, 2, 3]
        assert page.page_info.has_next_page is True
        assert page.page_info.has_previous_page is False
        assert page.page_info.end_cursor == page.edges[-1].cursor

    def test_walk_all_pages(self):
        """Following end cursors visits every row once, in order."""
        seen = []
        after = None
        while True:
            page = paginate(list(reversed(ROWS)), "User", ["id"], first=3, after=after)
            seen.extend(n["id"] for n in page.nodes)
            if not page.page_info.has_next_page:
                break
            after = page.page_info.end_cursor

        assert seen == [1, 2, 3, 4, 5, 6, 7]

    def test_exact_fit_has_no_next_page(self):
        """A page ending on the last row reports no next page."""
        first = paginate(ROWS, "User", ["id"], first=4)
        second = paginate(ROWS, "User", ["id"], first=3, after=first.page_info.end_cursor)

        assert [n["id"] for n in second.nodes] == [5, 6, 7]
        assert second.page_info.has_next_page is False
        assert second.page_info.has_previous_page is True

    def test_descending(self):
        """Descending order pages from the largest key."""
        first = paginate(ROWS, "User", ["id"], first=2, descending=True)
        second = paginate(
            ROWS, "User", ["id"], first=2, after=first.page_info.end_cursor, descending=True
        )

        assert [n["id"] for n in first.nodes] == [7, 6]
        assert [n["id"] for n in second.nodes] == [5, 4]

    def test_objects_as_rows(self):
        """Rows may expose ordering columns as attributes."""

        class Row:
            def __init__(self, id):
                self.id = id

        page = paginate([Row(2), Row(1)], "User", ["id"], first=5)

        assert [r.id for r in page.nodes] == [1, 2]
        assert page.page_info.has_next_page is False

    def test_empty(self):
        """An empty result has no cursors."""
        page = paginate([], "User", ["id"], first=5)

        assert page.edges == []
        assert page.page_info.start_cursor is None
        assert page.page_info.to_dict()["hasNextPage"] is False

    def test_bad_cursor_does_not_restart(self):
        """An invalid after cursor raises instead of returning page one."""
        with pytest.raises(InvalidCursorError):
            paginate(ROWS, "User", ["id"], first=2, after="garbage")

    @pytest.mark.parametrize("key", [["x"], [None], [{"a": 1}]])
    def test_mistyped_key_is_invalid_cursor(self, key):
        """A key that cannot be compared with the rows is an invalid cursor."""
        with pytest.raises(InvalidCursorError):
            paginate(ROWS, "User", ["id"], first=2, after=forged(key))


class TestPageSize:
    """Tests for page_size."""

    def test_default(self):
        """No first uses the default page size."""
        assert page_size(None, make_settings(default_page_size=15)) == 15

    def test_clamped_to_max(self):
        """first is capped at the maximum page size."""
        settings = make_settings(max_page_size=50)

        assert page_size(500, settings) == 50
        assert page_size(0, settings) == 0

    def test_negative_rejected(self):
        """Negative sizes are errors."""
        with pytest.raises(ValueError):
            page_size(-1, make_settings())
