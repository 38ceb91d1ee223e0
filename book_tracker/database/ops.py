import sqlite3
import logging
from contextlib import contextmanager
from typing import Optional, List, Dict, Tuple, Iterable, Iterator, Any

from ..catalog.names import generate_sort_name
from ..exceptions import NotFoundError
from ..models import Author, Book, OwnedSource, OwnershipCandidate

BOOK_COLUMNS = """
    b.id, b.external_id, b.title, b.isbn, b.description, b.publication_date,
    b.cover_url, b.owned, b.owned_source, b.deleted, b.created_at, b.updated_at
"""

AUTHOR_COLUMNS = """
    a.id, a.external_id, a.name, a.sort_name, a.bio, a.photo_url, a.created_at, a.updated_at
"""

# Columns a caller may change through update_book / bulk_update
BOOK_UPDATE_FIELDS = (
    'title', 'isbn', 'description', 'publication_date', 'cover_url',
    'owned', 'owned_source', 'deleted',
)


def _casefold(value):
    if isinstance(value, str):
        return value.strip().casefold()
    return value


class CatalogRepository:
    """
    Data access for books, authors and their associations.

    Name matching goes through the `casefold` SQL function registered here,
    so SQL lookups agree with the in-memory scanner cache on what
    "case-insensitive" means (SQLite's LOWER only folds ASCII).
    """
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.create_function("casefold", 1, _casefold, deterministic=True)

    @contextmanager
    def transaction(self) -> Iterator["CatalogRepository"]:
        """
        Scopes several operations into one all-or-nothing unit.
        Uses a SAVEPOINT so it also nests inside a caller's open transaction.
        """
        self.conn.execute("SAVEPOINT catalog_tx")
        try:
            yield self
        except BaseException:
            # SQLite may already have rolled back the whole transaction
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK TO SAVEPOINT catalog_tx")
                self.conn.execute("RELEASE SAVEPOINT catalog_tx")
            raise
        else:
            self.conn.execute("RELEASE SAVEPOINT catalog_tx")

    # --- Ownership (used by the reconciler) ---

    def reset_filesystem_ownership(self) -> int:
        """Clears ownership on every row whose flag came from a filesystem scan."""
        cur = self.conn.execute("""
            UPDATE books
            SET owned = 0, owned_source = 'none'
            WHERE owned_source = 'filesystem'
        """)
        return cur.rowcount

    def set_owned_by_candidates(self, candidates: Iterable[OwnershipCandidate]) -> int:
        """
        Marks every book matching a candidate as owned from the filesystem.
        Manual rows are never touched; all matches are updated, not just the first.
        """
        keys = {c.key for c in candidates}
        changed = 0
        for author_key, title_key in keys:
            cur = self.conn.execute("""
                UPDATE books
                SET owned = 1, owned_source = 'filesystem'
                WHERE owned_source != 'manual'
                  AND NOT (owned = 1 AND owned_source = 'filesystem')
                  AND id IN (
                      SELECT ba.book_id
                      FROM book_authors ba
                      JOIN authors a ON ba.author_id = a.id
                      JOIN books mb ON ba.book_id = mb.id
                      WHERE casefold(a.name) = ? AND casefold(mb.title) = ?
                  )
            """, (author_key, title_key))
            changed += cur.rowcount
        return changed

    def find_by_author_name_and_title(self, author_name: str, book_title: str) -> List[Book]:
        """
        Case-insensitive lookup by (author, title).
        The pair is not a storage constraint, so several rows may come back.
        """
        cur = self.conn.execute(f"""
            SELECT DISTINCT {BOOK_COLUMNS}
            FROM books b
            JOIN book_authors ba ON b.id = ba.book_id
            JOIN authors a ON ba.author_id = a.id
            WHERE casefold(a.name) = casefold(?) AND casefold(b.title) = casefold(?)
            ORDER BY b.id
        """, (author_name, book_title))
        return [self._row_to_book(r) for r in cur.fetchall()]

    def ownership_snapshot(self) -> Dict[int, Tuple[bool, OwnedSource]]:
        """Returns {book_id: (owned, owned_source)} for every row."""
        cur = self.conn.execute("SELECT id, owned, owned_source FROM books")
        return {row[0]: (bool(row[1]), OwnedSource(row[2])) for row in cur.fetchall()}

    # --- Authors ---

    def create_author(self,
                      external_id: str,
                      name: str,
                      bio: Optional[str] = None,
                      photo_url: Optional[str] = None) -> Author:
        cur = self.conn.execute("""
            INSERT INTO authors (external_id, name, sort_name, bio, photo_url)
            VALUES (?, ?, ?, ?, ?)
        """, (external_id, name, generate_sort_name(name), bio, photo_url))

        if cur.lastrowid is None:
            raise RuntimeError("Database INSERT failed to return a row ID.")
        author = self.find_author_by_id(cur.lastrowid)
        if author is None:
            raise RuntimeError("Failed to create author")
        return author

    def find_or_create_author(self,
                              external_id: str,
                              name: str,
                              bio: Optional[str] = None,
                              photo_url: Optional[str] = None) -> Author:
        """
        Returns the author with this external id, refreshing its details,
        or creates it.
        """
        existing = self.find_author_by_external_id(external_id)
        if existing is None:
            return self.create_author(external_id, name, bio, photo_url)

        if (existing.name, existing.bio, existing.photo_url) != (name, bio, photo_url):
            self.conn.execute("""
                UPDATE authors
                SET name = ?, sort_name = ?, bio = ?, photo_url = ?
                WHERE id = ?
            """, (name, generate_sort_name(name), bio, photo_url, existing.id))
            refreshed = self.find_author_by_id(existing.id)
            if refreshed is not None:
                return refreshed
        return existing

    def find_author_by_id(self, author_id: int) -> Optional[Author]:
        return self._fetch_author("a.id = ?", (author_id,))

    def find_author_by_external_id(self, external_id: str) -> Optional[Author]:
        return self._fetch_author("a.external_id = ?", (external_id,))

    def find_author_by_name(self, name: str) -> Optional[Author]:
        return self._fetch_author("casefold(a.name) = casefold(?)", (name,))

    def list_authors(self, limit: int = 50, offset: int = 0) -> List[Author]:
        cur = self.conn.execute(f"""
            SELECT {AUTHOR_COLUMNS}
            FROM authors a
            ORDER BY COALESCE(a.sort_name, a.name) COLLATE NOCASE, a.id
            LIMIT ? OFFSET ?
        """, (limit, offset))
        return [self._row_to_author(r) for r in cur.fetchall()]

    def backfill_sort_names(self) -> int:
        """Fills sort_name for authors created before it was tracked."""
        cur = self.conn.execute("SELECT id, name FROM authors WHERE sort_name IS NULL")
        rows = cur.fetchall()
        for author_id, name in rows:
            self.conn.execute("UPDATE authors SET sort_name = ? WHERE id = ?",
                              (generate_sort_name(name), author_id))
        if rows:
            logging.info(f"Backfilled sort names for {len(rows)} authors.")
        return len(rows)

    # --- Books ---

    def create_book(self,
                    external_id: str,
                    title: str,
                    isbn: Optional[str] = None,
                    description: Optional[str] = None,
                    publication_date: Optional[str] = None,
                    cover_url: Optional[str] = None,
                    owned: bool = False,
                    owned_source: OwnedSource = OwnedSource.NONE) -> Book:
        cur = self.conn.execute("""
            INSERT INTO books (
                external_id, title, isbn, description, publication_date,
                cover_url, owned, owned_source
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            external_id, title, isbn, description, publication_date,
            cover_url, int(owned), OwnedSource(owned_source).value
        ))

        if cur.lastrowid is None:
            raise RuntimeError("Database INSERT failed to return a row ID.")
        book = self.find_book_by_id(cur.lastrowid)
        if book is None:
            raise RuntimeError("Failed to create book")
        return book

    def find_book_by_id(self, book_id: int) -> Optional[Book]:
        return self._fetch_book("b.id = ?", (book_id,))

    def find_book_by_external_id(self, external_id: str) -> Optional[Book]:
        return self._fetch_book("b.external_id = ?", (external_id,))

    def update_book(self, book_id: int, **fields: Any) -> Book:
        """
        Partial update. Only the keyword arguments given are written.
        """
        assignments, values = self._build_assignments(fields)

        if assignments:
            values.append(book_id)
            self.conn.execute(f"UPDATE books SET {', '.join(assignments)} WHERE id = ?", values)

        book = self.find_book_by_id(book_id)
        if book is None:
            raise NotFoundError(f"Book with id {book_id} not found", {'book_id': book_id})
        return book

    def bulk_update(self, book_ids: List[int], **fields: Any) -> int:
        if not book_ids:
            return 0
        assignments, values = self._build_assignments(fields)
        if not assignments:
            return 0

        placeholders = ",".join("?" for _ in book_ids)
        cur = self.conn.execute(
            f"UPDATE books SET {', '.join(assignments)} WHERE id IN ({placeholders})",
            values + list(book_ids),
        )
        return cur.rowcount

    def list_books(self, limit: int = 50, offset: int = 0, include_deleted: bool = False) -> List[Book]:
        where = "" if include_deleted else "WHERE b.deleted = 0"
        cur = self.conn.execute(f"""
            SELECT {BOOK_COLUMNS}
            FROM books b
            {where}
            ORDER BY b.title COLLATE NOCASE ASC, b.id
            LIMIT ? OFFSET ?
        """, (limit, offset))
        return [self._row_to_book(r) for r in cur.fetchall()]

    def find_books_by_author_id(self, author_id: int, include_deleted: bool = False) -> List[Book]:
        deleted_condition = "" if include_deleted else "AND b.deleted = 0"
        cur = self.conn.execute(f"""
            SELECT {BOOK_COLUMNS}
            FROM books b
            JOIN book_authors ba ON b.id = ba.book_id
            WHERE ba.author_id = ? {deleted_condition}
            ORDER BY b.publication_date DESC, b.title ASC
        """, (author_id,))
        return [self._row_to_book(r) for r in cur.fetchall()]

    def count_books(self, include_deleted: bool = False) -> int:
        where = "" if include_deleted else "WHERE deleted = 0"
        cur = self.conn.execute(f"SELECT COUNT(*) FROM books {where}")
        return cur.fetchone()[0]

    def mark_deleted(self, book_id: int) -> Book:
        """Soft delete: the row stays so it cannot be re-imported."""
        return self.update_book(book_id, deleted=True)

    # --- Associations ---

    def link_authors(self, book_id: int, author_ids: List[int]):
        """Associates authors with a book, keeping the given order."""
        for order, author_id in enumerate(author_ids):
            self.conn.execute("""
                INSERT OR IGNORE INTO book_authors (book_id, author_id, author_order)
                VALUES (?, ?, ?)
            """, (book_id, author_id, order))

    def authors_for_book(self, book_id: int) -> List[Author]:
        cur = self.conn.execute(f"""
            SELECT {AUTHOR_COLUMNS}
            FROM authors a
            JOIN book_authors ba ON a.id = ba.author_id
            WHERE ba.book_id = ?
            ORDER BY ba.author_order, a.id
        """, (book_id,))
        return [self._row_to_author(r) for r in cur.fetchall()]

    # --- Row helpers ---

    def _build_assignments(self, fields: Dict[str, Any]) -> Tuple[List[str], List[Any]]:
        unknown = set(fields) - set(BOOK_UPDATE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown book fields: {', '.join(sorted(unknown))}")

        assignments = []
        values: List[Any] = []
        for name in BOOK_UPDATE_FIELDS:
            if name not in fields:
                continue
            value = fields[name]
            if name in ('owned', 'deleted'):
                value = int(bool(value))
            elif name == 'owned_source':
                value = OwnedSource(value).value
            assignments.append(f"{name} = ?")
            values.append(value)
        return assignments, values

    def _fetch_book(self, condition: str, params: tuple) -> Optional[Book]:
        cur = self.conn.execute(f"SELECT {BOOK_COLUMNS} FROM books b WHERE {condition}", params)
        row = cur.fetchone()
        return self._row_to_book(row) if row else None

    def _fetch_author(self, condition: str, params: tuple) -> Optional[Author]:
        cur = self.conn.execute(f"SELECT {AUTHOR_COLUMNS} FROM authors a WHERE {condition}", params)
        row = cur.fetchone()
        return self._row_to_author(row) if row else None

    @staticmethod
    def _row_to_book(row) -> Book:
        return Book(
            id=row[0],
            external_id=row[1],
            title=row[2],
            isbn=row[3],
            description=row[4],
            publication_date=row[5],
            cover_url=row[6],
            owned=bool(row[7]),
            owned_source=OwnedSource(row[8]),
            deleted=bool(row[9]),
            created_at=row[10],
            updated_at=row[11],
        )

    @staticmethod
    def _row_to_author(row) -> Author:
        return Author(
            id=row[0],
            external_id=row[1],
            name=row[2],
            sort_name=row[3],
            bio=row[4],
            photo_url=row[5],
            created_at=row[6],
            updated_at=row[7],
        )
