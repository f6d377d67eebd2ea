"""Cursor-based pagination over events ordered by (createdAt desc, id desc).

A cursor is an opaque url-safe base64 token of a small JSON object carrying the
timestamp and id of the last row returned. The next page holds only the rows
strictly before that pair in the same order, so rows that share a timestamp
are never skipped or repeated.
"""

import base64
import binascii
import json
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from .errors import CursorFormatError

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


class Cursor(NamedTuple):
    timestamp: datetime
    id: str


def encode_cursor(timestamp: datetime, row_id: str) -> str:
    payload = json.dumps(
        {"timestamp": timestamp.isoformat(), "id": row_id},
        separators=(",", ":"),
    )
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(token: str) -> Cursor:
    """Decode a token produced by ``encode_cursor``.

    Raises:
        CursorFormatError: if the token is not base64, not JSON, or lacks a
            valid timestamp/id pair.
    """

    try:
        raw = base64.b64decode(token.encode("ascii"), altchars=b"-_", validate=True)
        parsed = json.loads(raw.decode("utf-8"))
    except (ValueError, binascii.Error) as exc:
        raise CursorFormatError("Invalid cursor format") from exc

    if not isinstance(parsed, dict):
        raise CursorFormatError("Invalid cursor format")
    timestamp, row_id = parsed.get("timestamp"), parsed.get("id")
    if not isinstance(timestamp, str) or not isinstance(row_id, str) or not row_id:
        raise CursorFormatError("Invalid cursor format")
    try:
        return Cursor(timestamp=datetime.fromisoformat(timestamp), id=row_id)
    except ValueError as exc:
        raise CursorFormatError("Invalid cursor format") from exc


def format_page(rows: Sequence[Dict[str, Any]], limit: int) -> Dict[str, Any]:
    """Shape ``limit + 1`` fetched rows into one page.

    The extra row only signals that more data exists; it is never returned.
    """

    has_more = len(rows) > limit
    items: List[Dict[str, Any]] = list(rows[:limit]) if has_more else list(rows)
    next_cursor: Optional[str] = None
    if has_more and items:
        last = items[-1]
        next_cursor = encode_cursor(last["createdAt"], last["id"])
    return {
        "data": items,
        "pagination": {"nextCursor": next_cursor, "hasMore": has_more},
    }


def parse_limit(value: Optional[str], default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT) -> int:
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    if parsed < 1:
        return default
    return min(parsed, maximum)
