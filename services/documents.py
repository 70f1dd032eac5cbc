"""JSON document storage backed by the SQLite ``documents`` table."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional


class DocumentNotFoundError(KeyError):
    """Raised when a document targeted by an update does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}:{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


def new_id() -> str:
    """Return a fresh opaque identifier for documents, categories and tasks."""
    return uuid.uuid4().hex


def server_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentStore:
    """Collection/document facade over a single SQLite connection.

    Each mutating call commits on its own; there is no transaction spanning
    two documents.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        cursor = self.conn.execute(
            "SELECT doc_id, data FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, str(doc_id)),
        )
        row = cursor.fetchone()
        if not row:
            return None
        return self._decode(row)

    def get_all(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.conn.execute(
            """
            SELECT doc_id, data FROM documents
            WHERE collection = ?
            ORDER BY created_at DESC, doc_id ASC
            """,
            (collection,),
        )
        results: List[Dict[str, Any]] = []
        for row in cursor.fetchall():
            payload = self._decode(row)
            if filters and any(payload.get(key) != value for key, value in filters.items()):
                continue
            results.append(payload)
        return results

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def insert(
        self,
        collection: str,
        fields: Mapping[str, Any],
        *,
        server_timestamp_field: Optional[str] = None,
    ) -> str:
        payload = dict(fields)
        doc_id = str(payload.pop("id", None) or new_id())
        if server_timestamp_field:
            payload[server_timestamp_field] = server_timestamp()
        self.conn.execute(
            "INSERT INTO documents (collection, doc_id, data) VALUES (?, ?, ?)",
            (collection, doc_id, json.dumps(payload)),
        )
        self.conn.commit()
        return doc_id

    def update(self, collection: str, doc_id: str, partial: Mapping[str, Any]) -> Dict[str, Any]:
        current = self.get(collection, doc_id)
        if current is None:
            raise DocumentNotFoundError(collection, doc_id)
        current.update(partial)
        current.pop("id", None)
        self.conn.execute(
            """
            UPDATE documents
            SET data = ?, updated_at = CURRENT_TIMESTAMP
            WHERE collection = ? AND doc_id = ?
            """,
            (json.dumps(current), collection, str(doc_id)),
        )
        self.conn.commit()
        current["id"] = str(doc_id)
        return current

    def delete(self, collection: str, doc_id: str) -> None:
        self.conn.execute(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, str(doc_id)),
        )
        self.conn.commit()

    @staticmethod
    def _decode(row: sqlite3.Row) -> Dict[str, Any]:
        try:
            payload = json.loads(row["data"])
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        payload["id"] = row["doc_id"]
        return payload


__all__ = [
    "DocumentNotFoundError",
    "DocumentStore",
    "new_id",
    "server_timestamp",
]
