"""
Form Builder Cursor Pagination — keyset cursors over a sort key.

A cursor encodes the (sort value, id) of the last item on a page, never a
row offset. The next page holds items strictly after that boundary in sort
order, so inserts and deletes between calls cannot duplicate or skip items
that existed when the cursor was issued.

Sort strings are Django-style: "created_on" ascending, "-created_on"
descending. Ties are broken by id in the same direction.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from pydantic import BaseModel

from formbuilder.engine.errors import FormBuilderValidationError

T = TypeVar("T")

SortInput = Union[None, str, Sequence[str]]


class ListMeta(BaseModel):
    cursor: Optional[str] = None
    has_more_items: bool = False
    total_count: int = 0


@dataclass(frozen=True)
class SortSpec:
    field: str
    descending: bool

    def key(self, item: Any) -> Tuple[Any, str]:
        return getattr(item, self.field), item.id

    def is_after(self, key: Tuple[Any, str], boundary: Tuple[Any, str]) -> bool:
        """True if `key` comes strictly after `boundary` in this sort order."""
        return key < boundary if self.descending else key > boundary

    def __str__(self) -> str:
        return f"-{self.field}" if self.descending else self.field


def parse_sort(sort: SortInput, allowed: Iterable[str], default: str) -> SortSpec:
    """
    Parse "-created_on" / "created_on" (or a one-element list of either).

    Raises:
        FormBuilderValidationError for unknown sort fields.
    """
    if sort is None or sort == [] or sort == ():
        sort = default
    if not isinstance(sort, str):
        sort = sort[0]

    descending = sort.startswith("-")
    field = sort.lstrip("-")
    allowed = set(allowed)
    if field not in allowed:
        raise FormBuilderValidationError(
            f"Cannot sort by '{field}'",
            validation_errors=[{"field": "sort", "error": f"allowed: {sorted(allowed)}"}],
        )
    return SortSpec(field=field, descending=descending)


# ---------------------------------------------------------------------------
# Cursor encoding
# ---------------------------------------------------------------------------

def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"$dt": value.isoformat()}
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict) and "$dt" in value:
        return datetime.fromisoformat(value["$dt"])
    return value


def encode_cursor(key: Tuple[Any, str]) -> str:
    value, item_id = key
    raw = json.dumps([_encode_value(value), item_id], separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Tuple[Any, str]:
    """
    Decode a cursor produced by encode_cursor().

    Raises:
        FormBuilderValidationError for malformed cursors.
    """
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        value, item_id = json.loads(raw)
        return _decode_value(value), str(item_id)
    except (binascii.Error, UnicodeError, ValueError, TypeError) as e:
        raise FormBuilderValidationError(
            "Malformed pagination cursor",
            validation_errors=[{"field": "after", "error": str(e)}],
        ) from e


def paginate(
    items: Sequence[T],
    spec: SortSpec,
    limit: int,
    after: Optional[str] = None,
) -> Tuple[List[T], ListMeta]:
    """
    Sort, cut at the cursor boundary and slice one page from an in-memory
    candidate list. total_count counts every candidate, not just the page.
    """
    ordered = sorted(items, key=spec.key, reverse=spec.descending)
    if after:
        boundary = decode_cursor(after)
        try:
            ordered = [item for item in ordered if spec.is_after(spec.key(item), boundary)]
        except TypeError as e:
            raise FormBuilderValidationError(
                f"Cursor does not match sort '{spec}'",
                validation_errors=[{"field": "after", "error": str(e)}],
            ) from e

    page = ordered[:limit]
    has_more = len(ordered) > limit
    cursor = encode_cursor(spec.key(page[-1])) if has_more and page else None
    return page, ListMeta(cursor=cursor, has_more_items=has_more, total_count=len(items))
