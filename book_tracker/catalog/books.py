import logging
import sqlite3
import threading
from contextlib import contextmanager, nullcontext
from typing import List, Optional

from .records import CatalogRecord
from ..config import DEFAULT_LIST_LIMIT
from ..database.ops import CatalogRepository
from ..exceptions import DatabaseError, NotFoundError, ValidationError
from ..models import BookStatus, BookWithAuthors, OwnedSource
from ..scanning.collection import OwnershipScanner


class BookService:
    """
    Catalog operations driven by the user: importing books, editing
    ownership, deleting.

    Ownership set here is tagged 'manual' whenever the user asks for an
    override, which protects it from later filesystem scans.
    """
    def __init__(self,
                 repo: CatalogRepository,
                 scanner: OwnershipScanner,
                 write_lock: Optional[threading.Lock] = None):
        self.repo = repo
        self.scanner = scanner
        self.write_lock = write_lock

    def import_book(self, record: CatalogRecord) -> BookWithAuthors:
        """
        Adds a catalog record to the library with its authors.
        Ownership comes from the current scan cache (primary author + title).
        """
        logging.info(f"Starting book import: {record.external_id}")

        existing = self.repo.find_book_by_external_id(record.external_id)
        if existing:
            details = {'external_id': record.external_id, 'book_id': existing.id}
            if existing.deleted:
                logging.warning(f"Attempted to import deleted book {record.external_id} (id={existing.id})")
                raise ValidationError("This book was previously deleted and cannot be re-imported", details)
            raise ValidationError("Book already imported", details)

        owned = self._check_ownership(record)

        with self._writing():
            author_ids = []
            for author in record.authors:
                stored = self.repo.find_or_create_author(
                    author.external_id, author.name, author.bio, author.photo_url
                )
                author_ids.append(stored.id)

            book = self.repo.create_book(
                external_id=record.external_id,
                title=record.title,
                isbn=record.isbn,
                description=record.description,
                publication_date=record.publication_date,
                cover_url=record.cover_url,
                owned=owned,
                owned_source=OwnedSource.FILESYSTEM if owned else OwnedSource.NONE,
            )
            self.repo.link_authors(book.id, author_ids)

        logging.info(
            f"Book imported: id={book.id} '{book.title}' owned={book.owned} "
            f"source={book.owned_source.value} authors={len(author_ids)}"
        )
        return self.get_book_with_authors(book.id)

    def get_book_with_authors(self, book_id: int) -> BookWithAuthors:
        book = self.repo.find_book_by_id(book_id)
        if book is None:
            raise NotFoundError("Book not found", {'book_id': book_id})
        return BookWithAuthors(book=book, authors=self.repo.authors_for_book(book_id))

    def list_books(self, limit: int = DEFAULT_LIST_LIMIT, offset: int = 0) -> List[BookWithAuthors]:
        return [
            BookWithAuthors(book=b, authors=self.repo.authors_for_book(b.id))
            for b in self.repo.list_books(limit=limit, offset=offset)
        ]

    def update_ownership(self, book_id: int, owned: bool, manual: bool = False) -> BookWithAuthors:
        logging.info(f"Updating ownership of book {book_id}: owned={owned} manual={manual}")
        self._require(book_id)

        if manual:
            source = OwnedSource.MANUAL
        else:
            source = OwnedSource.FILESYSTEM if owned else OwnedSource.NONE

        with self._writing():
            self.repo.update_book(book_id, owned=owned, owned_source=source)
        return self.get_book_with_authors(book_id)

    def delete_book(self, book_id: int) -> BookWithAuthors:
        """Soft delete."""
        book = self._require(book_id)
        if book.deleted:
            logging.warning(f"Book {book_id} already deleted")

        with self._writing():
            self.repo.mark_deleted(book_id)
        logging.info(f"Book marked as deleted: {book_id} '{book.title}'")
        return self.get_book_with_authors(book_id)

    def bulk_update(self,
                    book_ids: List[int],
                    owned: Optional[bool] = None,
                    deleted: Optional[bool] = None) -> List[BookWithAuthors]:
        """
        Applies the same change to several books at once.
        Ownership set in bulk is always a manual override.
        """
        if not book_ids:
            return []

        for book_id in book_ids:
            self._require(book_id)

        fields = {}
        if owned is not None:
            fields['owned'] = owned
            fields['owned_source'] = OwnedSource.MANUAL if owned else OwnedSource.NONE
        if deleted is not None:
            fields['deleted'] = deleted

        with self._writing():
            self.repo.bulk_update(book_ids, **fields)

        logging.info(f"Bulk update of {len(book_ids)} books: owned={owned} deleted={deleted}")
        return [self.get_book_with_authors(book_id) for book_id in book_ids]

    def check_book_status(self, external_id: str) -> BookStatus:
        book = self.repo.find_book_by_external_id(external_id)
        if book is None:
            return BookStatus(exists=False, deleted=False, book_id=None)
        return BookStatus(exists=True, deleted=book.deleted, book_id=book.id)

    def _require(self, book_id: int):
        book = self.repo.find_book_by_id(book_id)
        if book is None:
            raise NotFoundError("Book not found", {'book_id': book_id})
        return book

    def _check_ownership(self, record: CatalogRecord) -> bool:
        author = record.primary_author
        if author is None:
            return False
        owned = self.scanner.is_owned(author.name, record.title)
        logging.debug(f"Ownership check for '{record.title}' by {author.name}: {owned}")
        return owned

    @contextmanager
    def _writing(self):
        """Write lock (if any) held for the span of one repository transaction."""
        try:
            with self.write_lock or nullcontext():
                with self.repo.transaction():
                    yield
        except sqlite3.Error as e:
            logging.error(f"Catalog write failed and was rolled back: {e}")
            raise DatabaseError(f"Catalog write failed: {e}") from e
