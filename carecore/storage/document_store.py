"""Document store: DuckDB-backed durable store partitioned by user."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import duckdb

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def sort_timestamp(value: datetime) -> str:
    """Fixed-width UTC timestamp that sorts lexically in time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")


class StoreConflictError(Exception):
    """Raised when a version-checked write loses a race."""

    def __init__(self, collection: str, entity_id: str, expected: int, actual: int | None) -> None:
        super().__init__(
            f"Version conflict on {collection}/{entity_id}: expected {expected}, found {actual}"
        )
        self.collection = collection
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual


class StoredDocument:
    """A document body with its storage version."""

    __slots__ = ("body", "entity_id", "version")

    def __init__(self, entity_id: str, body: dict[str, Any], version: int) -> None:
        self.entity_id = entity_id
        self.body = body
        self.version = version


class DocumentStore:
    """JSON document store keyed by ``(collection, user_id, entity_id)``.

    Every statement runs under an asyncio lock, so a single store instance is
    safe to share between the coroutines of one event loop. Writes carry a
    monotonically increasing version used for optimistic read-modify-write.
    """

    def __init__(self, database_path: str | Path = ":memory:") -> None:
        """Initialize document store.

        Args:
            database_path: DuckDB database path (":memory:" for in-memory)
        """
        self.db_path = database_path
        self.conn: duckdb.DuckDBPyConnection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database schema."""
        async with self._lock:
            self.conn = duckdb.connect(str(self.db_path))

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection VARCHAR,
                    user_id VARCHAR,
                    entity_id VARCHAR,
                    body JSON,
                    sort_key VARCHAR,
                    version BIGINT,
                    updated_at TIMESTAMP,
                    PRIMARY KEY (collection, user_id, entity_id)
                )
            """)

            logger.info("Document store initialized")

    def _require_conn(self) -> duckdb.DuckDBPyConnection:
        if not self.conn:
            raise RuntimeError("Document store not initialized")
        return self.conn

    async def get(self, collection: str, user_id: str, entity_id: str) -> dict[str, Any] | None:
        """Fetch a document body.

        Args:
            collection: Collection name
            user_id: Partition key
            entity_id: Document identifier

        Returns:
            Document body or None if missing
        """
        document = await self.get_versioned(collection, user_id, entity_id)
        return document.body if document else None

    async def get_versioned(
        self, collection: str, user_id: str, entity_id: str
    ) -> StoredDocument | None:
        """Fetch a document body together with its version."""
        async with self._lock:
            conn = self._require_conn()
            row = conn.execute(
                """
                SELECT entity_id, body, version FROM documents
                WHERE collection = ? AND user_id = ? AND entity_id = ?
            """,
                [collection, user_id, entity_id],
            ).fetchone()

        if row is None:
            return None
        return StoredDocument(row[0], json.loads(row[1]), row[2])

    async def put(
        self,
        collection: str,
        user_id: str,
        entity_id: str,
        body: dict[str, Any],
        sort_key: str = "",
        expected_version: int | None = None,
    ) -> int:
        """Insert or replace a document.

        Args:
            collection: Collection name
            user_id: Partition key
            entity_id: Document identifier
            body: JSON-serializable document body
            sort_key: Ordering key used by ``query``
            expected_version: If set, the write only succeeds when the stored
                version still matches (0 means "must not exist yet")

        Returns:
            New document version

        Raises:
            StoreConflictError: If ``expected_version`` does not match
        """
        payload = json.dumps(body, ensure_ascii=False)

        async with self._lock:
            conn = self._require_conn()
            row = conn.execute(
                """
                SELECT version FROM documents
                WHERE collection = ? AND user_id = ? AND entity_id = ?
            """,
                [collection, user_id, entity_id],
            ).fetchone()
            current = row[0] if row else None

            if expected_version is not None and (current or 0) != expected_version:
                raise StoreConflictError(collection, entity_id, expected_version, current)

            version = (current or 0) + 1
            conn.execute(
                """
                INSERT OR REPLACE INTO documents
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                [
                    collection,
                    user_id,
                    entity_id,
                    payload,
                    sort_key,
                    version,
                    datetime.now(UTC),
                ],
            )
            return version

    async def insert(
        self,
        collection: str,
        user_id: str,
        entity_id: str,
        body: dict[str, Any],
        sort_key: str = "",
    ) -> None:
        """Insert a document that must not exist yet.

        Raises:
            StoreConflictError: If the document already exists
        """
        await self.put(collection, user_id, entity_id, body, sort_key, expected_version=0)

    async def query(
        self,
        collection: str,
        user_id: str,
        filters: dict[str, str] | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Query a user's documents.

        Args:
            collection: Collection name
            user_id: Partition key
            filters: Equality predicates on top-level JSON fields
            descending: Order by sort key descending
            limit: Maximum documents to return

        Returns:
            Document bodies ordered by sort key
        """
        documents = await self.query_versioned(collection, user_id, filters, descending, limit)
        return [document.body for document in documents]

    async def query_versioned(
        self,
        collection: str,
        user_id: str,
        filters: dict[str, str] | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        """Query a user's documents, keeping versions."""
        clauses = ["collection = ?", "user_id = ?"]
        params: list[Any] = [collection, user_id]

        for field, value in (filters or {}).items():
            if not field.isidentifier():
                raise ValueError(f"Invalid filter field: {field!r}")
            clauses.append(f"json_extract_string(body, '$.{field}') = ?")
            params.append(value)

        order = "DESC" if descending else "ASC"
        query = f"""
            SELECT entity_id, body, version FROM documents
            WHERE {" AND ".join(clauses)}
            ORDER BY sort_key {order}, entity_id {order}
        """
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        async with self._lock:
            conn = self._require_conn()
            rows = conn.execute(query, params).fetchall()

        return [StoredDocument(r[0], json.loads(r[1]), r[2]) for r in rows]

    async def count(self, collection: str, user_id: str) -> int:
        """Count a user's documents in a collection."""
        async with self._lock:
            conn = self._require_conn()
            row = conn.execute(
                "SELECT COUNT(*) FROM documents WHERE collection = ? AND user_id = ?",
                [collection, user_id],
            ).fetchone()
        return int(row[0]) if row else 0

    async def close(self) -> None:
        """Close database connection."""
        async with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.info("Document store closed")
