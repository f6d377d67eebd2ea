from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from cost_profiler.config.logger import get_logger

from .pagination import Cursor

LOGGER = get_logger("cost_profiler.event_repository")

FILTERABLE_DIMENSIONS = ("feature", "model", "provider", "userId")


@dataclass
class EventQuery:
    start: datetime
    end: datetime
    limit: int
    cursor: Optional[Cursor] = None
    filters: Dict[str, str] = field(default_factory=dict)


class FirestoreEventRepository:
    """Durable event rows.

    Firestore path: {collection}/{id}
    """

    def __init__(self, db: firestore.AsyncClient, collection: str = "events"):
        self._db = db
        self._collection = collection

    async def insert_events(self, rows: Sequence[Dict[str, Any]]) -> None:
        """Write every row in one batch commit; either all land or none do."""

        collection = self._db.collection(self._collection)
        batch = self._db.batch()
        for row in rows:
            batch.set(collection.document(row["id"]), row)
        await batch.commit()
        LOGGER.info(
            "Event rows committed",
            extra={"collection": self._collection, "count": len(rows)},
        )

    async def list_events(self, query: EventQuery) -> List[Dict[str, Any]]:
        """Return up to ``query.limit`` rows, newest first.

        Callers pass ``limit + 1`` to detect whether another page exists.
        """

        ref = self._db.collection(self._collection)
        q = ref.where(filter=FieldFilter("createdAt", ">=", query.start)).where(
            filter=FieldFilter("createdAt", "<", query.end)
        )
        for name, value in query.filters.items():
            if name in FILTERABLE_DIMENSIONS and value:
                q = q.where(filter=FieldFilter(name, "==", value))
        q = q.order_by("createdAt", direction=firestore.Query.DESCENDING).order_by(
            "id", direction=firestore.Query.DESCENDING
        )
        if query.cursor is not None:
            # Strictly after the cursor row in (createdAt desc, id desc) order.
            q = q.start_after({"createdAt": query.cursor.timestamp, "id": query.cursor.id})
        q = q.limit(query.limit)

        rows: List[Dict[str, Any]] = []
        async for snapshot in q.stream():
            rows.append(snapshot.to_dict())
        LOGGER.debug(
            "Event rows listed",
            extra={"collection": self._collection, "count": len(rows), "filters": query.filters},
        )
        return rows
