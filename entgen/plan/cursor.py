"""
Reference cursor codec and page slicing.

A cursor is the URL-safe base64 encoding of a compact JSON document:

    {"t": "<type name>", "o": ["<ordering column>", ...], "k": [<key value>, ...]}

It identifies the ordering key of the last row of a page. Decoding a cursor
that is malformed, or that was issued for another type or another ordering,
raises InvalidCursorError; a bad cursor never silently restarts from the
first page.

Paging fetches ``first + 1`` rows. ``has_next_page`` is true iff the extra
row exists, and ``end_cursor`` encodes the last row actually returned.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..config import Settings, get_settings
from ..errors import InvalidCursorError


def encode_cursor(type_name: str, order_by: Sequence[str], key: Sequence[Any]) -> str:
    """Encode the ordering key of a row.

    Example:
        >>> cursor = encode_cursor("User", ["id"], [42])
        >>> decode_cursor(cursor, "User", ["id"])
        (42,)
    """
    payload = {"t": type_name, "o": list(order_by), "k": list(key)}
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str, type_name: str, order_by: Sequence[str]) -> Tuple[Any, ...]:
    """Decode a cursor issued for ``type_name`` ordered by ``order_by``.

    Returns:
        The key values of the row the cursor points at

    Raises:
        InvalidCursorError: If the cursor is malformed or foreign
    """
    if not isinstance(cursor, str) or not cursor:
        raise InvalidCursorError(str(cursor), "cursor is empty")
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidCursorError(cursor, f"cursor is not decodable: {e}") from e

    if not isinstance(payload, dict) or set(payload) != {"t", "o", "k"}:
        raise InvalidCursorError(cursor, "cursor has an unexpected shape")
    if payload["t"] != type_name:
        raise InvalidCursorError(cursor, f"cursor belongs to type '{payload['t']}'")
    if payload["o"] != list(order_by):
        raise InvalidCursorError(cursor, "cursor was issued for a different ordering")
    key = payload["k"]
    if not isinstance(key, list) or len(key) != len(order_by):
        raise InvalidCursorError(cursor, "cursor key does not match the ordering")
    if not all(isinstance(v, (str, int, float, bool)) for v in key):
        raise InvalidCursorError(cursor, "cursor key holds a non-scalar value")
    return tuple(key)


@dataclass(frozen=True)
class PageInfo:
    has_next_page: bool
    has_previous_page: bool = False
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasNextPage": self.has_next_page,
            "hasPreviousPage": self.has_previous_page,
            "startCursor": self.start_cursor,
            "endCursor": self.end_cursor,
        }


@dataclass(frozen=True)
class Edge:
    node: Any
    cursor: str


@dataclass(frozen=True)
class Page:
    """One page of a connection."""

    edges: List[Edge] = dataclass_field(default_factory=list)
    page_info: PageInfo = dataclass_field(default_factory=lambda: PageInfo(False))

    @property
    def nodes(self) -> List[Any]:
        return [e.node for e in self.edges]


def _getter(columns: Sequence[str]) -> Callable[[Any], Tuple[Any, ...]]:
    def key_of(row: Any) -> Tuple[Any, ...]:
        if isinstance(row, Mapping):
            return tuple(row[c] for c in columns)
        return tuple(getattr(row, c) for c in columns)

    return key_of


def page_size(first: Optional[int], settings: Optional[Settings] = None) -> int:
    """Effective page size for a requested ``first``.

    Raises:
        ValueError: If first is negative
    """
    settings = settings or get_settings()
    if first is None:
        return settings.default_page_size
    if first < 0:
        raise ValueError(f"first must be non-negative, got {first}")
    return min(first, settings.max_page_size)


def slice_page(
    fetched: Sequence[Any],
    first: int,
    type_name: str,
    order_by: Sequence[str],
    after: Optional[str] = None,
) -> Page:
    """Build a page from rows fetched with a limit of ``first + 1``."""
    key_of = _getter(order_by)
    returned = list(fetched[:first])
    edges = [
        Edge(node=row, cursor=encode_cursor(type_name, order_by, key_of(row)))
        for row in returned
    ]
    page_info = PageInfo(
        has_next_page=len(fetched) > first,
        has_previous_page=after is not None,
        start_cursor=edges[0].cursor if edges else None,
        end_cursor=edges[-1].cursor if edges else None,
    )
    return Page(edges=edges, page_info=page_info)


def paginate(
    rows: Iterable[Any],
    type_name: str,
    order_by: Sequence[str],
    first: Optional[int] = None,
    after: Optional[str] = None,
    descending: bool = False,
    settings: Optional[Settings] = None,
) -> Page:
    """Forward-paginate in-memory rows by their ordering key.

    Args:
        rows: Rows as mappings or objects exposing the ordering columns
        type_name: Type the cursors are issued for
        order_by: Ordering columns (the primary key by default)
        first: Page size (default and upper bound from settings)
        after: Cursor of the last row of the previous page
        descending: Order by the key descending instead of ascending

    Raises:
        InvalidCursorError: If ``after`` is malformed or foreign
    """
    limit = page_size(first, settings)
    key_of = _getter(order_by)
    ordered = sorted(rows, key=key_of, reverse=descending)

    if after is not None:
        start = decode_cursor(after, type_name, order_by)
        try:
            if descending:
                ordered = [r for r in ordered if key_of(r) < start]
            else:
                ordered = [r for r in ordered if key_of(r) > start]
        except TypeError as e:
            raise InvalidCursorError(after, "cursor key type does not match the ordering") from e

    return slice_page(ordered[: limit + 1], limit, type_name, order_by, after=after)
