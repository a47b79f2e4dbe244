"""
Storage gateway using SQLite.

Objects and their links live in a single database file:
- ``objects`` holds one row per (bucket, key) with the data as JSON
- ``links`` holds each object's outgoing links, ordered by position

Storing an object replaces its whole link list, mirroring a key/value store
where links travel with the object.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .errors import NotFoundError
from .types import Link, StoredObject

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class SQLiteGateway:
    """
    SQLite-backed StorageGateway.

    Keys are listed in insertion order; re-storing an object keeps its
    original position.
    """

    def __init__(self, db_path: Path, batch_size: int = DEFAULT_BATCH_SIZE):
        """
        Args:
            db_path: Path to SQLite database file
            batch_size: Keys per batch when streaming
        """
        self._conn: Optional[sqlite3.Connection] = None
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive: {batch_size}")
        self._db_path = Path(db_path)
        self._batch_size = batch_size
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS objects (
                bucket TEXT NOT NULL,
                key TEXT NOT NULL,
                data_json TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (bucket, key)
            )
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS links (
                bucket TEXT NOT NULL,
                key TEXT NOT NULL,
                position INTEGER NOT NULL,
                target_bucket TEXT NOT NULL,
                target_key TEXT NOT NULL,
                tag TEXT NOT NULL,
                PRIMARY KEY (bucket, key, position),
                FOREIGN KEY (bucket, key) REFERENCES objects(bucket, key)
                    ON DELETE CASCADE
            )
        """)

        # Index for reverse lookups when inspecting a store
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_links_target
            ON links(target_bucket, target_key)
        """)

        self._conn.commit()

    def _now(self) -> str:
        """Current timestamp in ISO format."""
        return datetime.now(timezone.utc).isoformat()

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, bucket: str, key: str) -> StoredObject:
        """
        Get an object by key.

        Raises:
            NotFoundError: If there is no object at bucket/key
        """
        row = self._conn.execute("""
            SELECT data_json FROM objects
            WHERE bucket = ? AND key = ?
        """, (bucket, key)).fetchone()
        if row is None:
            raise NotFoundError(bucket, key)

        cursor = self._conn.execute("""
            SELECT target_bucket, target_key, tag FROM links
            WHERE bucket = ? AND key = ?
            ORDER BY position
        """, (bucket, key))
        links = [Link(r["target_bucket"], r["target_key"], r["tag"]) for r in cursor]

        return StoredObject(
            bucket=bucket,
            key=key,
            data=json.loads(row["data_json"]),
            links=links,
            exists=True,
        )

    def get_or_create(self, bucket: str, key: str) -> StoredObject:
        try:
            return self.get(bucket, key)
        except NotFoundError:
            return StoredObject(bucket=bucket, key=key)

    def list_keys(self, bucket: str) -> list[str]:
        cursor = self._conn.execute("""
            SELECT key FROM objects
            WHERE bucket = ?
            ORDER BY rowid
        """, (bucket,))
        return [row["key"] for row in cursor]

    def stream_keys(self, bucket: str) -> Iterator[list[str]]:
        """Yield keys a page at a time."""
        offset = 0
        while True:
            cursor = self._conn.execute("""
                SELECT key FROM objects
                WHERE bucket = ?
                ORDER BY rowid
                LIMIT ? OFFSET ?
            """, (bucket, self._batch_size, offset))
            batch = [row["key"] for row in cursor]
            if not batch:
                return
            yield batch
            if len(batch) < self._batch_size:
                return
            offset += len(batch)

    def walk_links(
        self,
        obj: StoredObject,
        bucket: str,
        keep: bool = True,
    ) -> list[list[StoredObject]]:
        found = []
        for link in obj.links:
            if link.bucket != bucket:
                continue
            try:
                found.append(self.get(link.bucket, link.key))
            except NotFoundError:
                logger.debug("Dangling link %s/%s -> %s/%s",
                             obj.bucket, obj.key, link.bucket, link.key)
        return [found]

    def list_buckets(self) -> list[str]:
        """List all bucket names."""
        cursor = self._conn.execute("""
            SELECT DISTINCT bucket FROM objects
            ORDER BY bucket
        """)
        return [row["bucket"] for row in cursor]

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def store(self, obj: StoredObject) -> None:
        """
        Insert or update an object and replace its links.

        Preserves created_at and list position on update.
        """
        now = self._now()
        data_json = json.dumps(obj.data, ensure_ascii=False)

        with self._conn:
            self._conn.execute("""
                INSERT INTO objects (bucket, key, data_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(bucket, key) DO UPDATE SET
                    data_json = excluded.data_json,
                    updated_at = excluded.updated_at
            """, (obj.bucket, obj.key, data_json, now, now))
            self._conn.execute("""
                DELETE FROM links
                WHERE bucket = ? AND key = ?
            """, (obj.bucket, obj.key))
            self._conn.executemany("""
                INSERT INTO links (bucket, key, position, target_bucket, target_key, tag)
                VALUES (?, ?, ?, ?, ?, ?)
            """, [
                (obj.bucket, obj.key, i, link.bucket, link.key, link.tag)
                for i, link in enumerate(obj.links)
            ])

        obj.exists = True
        logger.debug("Stored %s/%s (%d links)", obj.bucket, obj.key, len(obj.links))

    def delete(self, bucket: str, key: str) -> bool:
        """
        Delete an object and its outgoing links.

        Returns:
            True if the object existed and was deleted
        """
        with self._conn:
            cursor = self._conn.execute("""
                DELETE FROM objects
                WHERE bucket = ? AND key = ?
            """, (bucket, key))
        return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
