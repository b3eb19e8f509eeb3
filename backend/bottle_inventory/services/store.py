"""SQLite-backed store of captured bottles."""

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS bottles (
  bottle_id          INTEGER PRIMARY KEY,
  owner_scope        TEXT NOT NULL,
  name               TEXT NOT NULL DEFAULT '',
  brand              TEXT NOT NULL DEFAULT '',
  nicotine_strength  TEXT NOT NULL DEFAULT '',
  bottle_size        TEXT NOT NULL DEFAULT '',
  batch_number       TEXT NOT NULL DEFAULT '',
  expiration_date    TEXT NOT NULL DEFAULT '',
  created_at         TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_bottles_owner ON bottles(owner_scope);
"""


class StoreError(Exception):
    """Raised when the bottle store cannot be opened or queried."""


@dataclass
class BottleRecord:
    """One stored bottle. Field values are kept as captured (strings)."""
    owner_scope: str
    name: str = ""
    brand: str = ""
    nicotine_strength: str = ""
    bottle_size: str = ""
    batch_number: str = ""
    expiration_date: str = ""
    bottle_id: Optional[int] = None


class StoreSession:
    """Queries bound to one open connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def list_records(self, owner_scope: Optional[str] = None) -> List[BottleRecord]:
        """All bottles, or only those of one owner scope."""
        sql = (
            "SELECT bottle_id, owner_scope, name, brand, nicotine_strength, bottle_size, "
            "batch_number, expiration_date FROM bottles"
        )
        params = ()
        if owner_scope is not None:
            sql += " WHERE owner_scope = ?"
            params = (owner_scope,)
        sql += " ORDER BY bottle_id"

        try:
            rows = self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list bottles: {e}") from e

        return [
            BottleRecord(
                bottle_id=row["bottle_id"],
                owner_scope=row["owner_scope"],
                name=row["name"],
                brand=row["brand"],
                nicotine_strength=row["nicotine_strength"],
                bottle_size=row["bottle_size"],
                batch_number=row["batch_number"],
                expiration_date=row["expiration_date"],
            )
            for row in rows
        ]

    def add_record(self, record: BottleRecord) -> int:
        """Insert a bottle and return its id."""
        try:
            cur = self.conn.execute(
                """
                INSERT INTO bottles (owner_scope, name, brand, nicotine_strength, bottle_size,
                                     batch_number, expiration_date)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.owner_scope,
                    record.name or "",
                    record.brand or "",
                    record.nicotine_strength or "",
                    record.bottle_size or "",
                    record.batch_number or "",
                    record.expiration_date or "",
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to add bottle: {e}") from e

        record.bottle_id = cur.lastrowid
        return cur.lastrowid


class BottleStore:
    """
    SQLite bottle database.

    - Ensures the schema on first use
    - Hands out one scoped session (connection) per unit of work
    """

    def __init__(self, database_path: str):
        self.database_path = database_path
        folder = os.path.dirname(os.path.abspath(database_path))
        os.makedirs(folder, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.database_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open bottle store at {self.database_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def session(self) -> Iterator[StoreSession]:
        """Open a session; the connection is released when the block exits."""
        with self.connect() as conn:
            yield StoreSession(conn)

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            try:
                conn.executescript(SCHEMA_SQL)
                conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to create bottle schema: {e}") from e
        logger.info(f"Bottle store ready at {self.database_path}")
