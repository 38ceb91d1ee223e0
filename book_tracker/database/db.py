"""
Database connection management.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional

from .ops import CatalogRepository
from .schema import init_schema
from ..exceptions import DatabaseError

class DBManager:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        # SQLite WAL mode allows multiple readers, but writes need serialization
        self._write_lock = threading.Lock()

    def connect(self) -> sqlite3.Connection:
        """
        Connects to the SQLite database and configures pragmas.
        Creates the parent directory for file-backed catalogs.
        """
        if self._conn:
            return self._conn

        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        logging.info(f"Connecting to database: {self.db_path}")
        try:
            self._conn = sqlite3.connect(self.db_path)

            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA foreign_keys=ON;")

            # Ensure schema exists
            init_schema(self._conn)

            # Authors stored before sort names existed
            with self._conn:
                CatalogRepository(self._conn).backfill_sort_names()
        except sqlite3.Error as e:
            self.close()
            raise DatabaseError(f"Cannot open catalog database {self.db_path}: {e}") from e

        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def write_lock(self) -> threading.Lock:
        """Returns the write lock serializing catalog writers in this process."""
        return self._write_lock
