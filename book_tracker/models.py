from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple


class OwnedSource(str, Enum):
    """
    Where a book's ownership flag came from.
    Filesystem scans only ever touch NONE and FILESYSTEM rows.
    """
    NONE = "none"
    FILESYSTEM = "filesystem"
    MANUAL = "manual"


def match_key(author_name: str, book_title: str) -> Tuple[str, str]:
    """Case-insensitive, whitespace-trimmed (author, title) key."""
    return author_name.strip().casefold(), book_title.strip().casefold()


@dataclass(frozen=True)
class OwnershipCandidate:
    """
    An (author, title) pair found on disk as <root>/<Author>/<Title>/.
    """
    author_name: str
    book_title: str

    @property
    def key(self) -> Tuple[str, str]:
        return match_key(self.author_name, self.book_title)


@dataclass(frozen=True)
class MalformedEntry:
    """A level-two entry that could not be turned into a candidate."""
    path: Path
    reason: str

    def __str__(self) -> str:
        return f"{self.reason}: {self.path}"


@dataclass(frozen=True)
class ScanReport:
    root: Path
    candidates: Tuple[OwnershipCandidate, ...]
    errors: Tuple[MalformedEntry, ...]
    completed_at: datetime
    from_cache: bool = False

    @property
    def entries_scanned(self) -> int:
        return len(self.candidates) + len(self.errors)


@dataclass
class CacheInfo:
    size: int
    age: Optional[float]         # seconds since the last successful scan
    expired: bool
    last_scan_at: Optional[datetime] = None


@dataclass
class ReconcileStats:
    scanned_count: int
    owned_count: int
    updated_count: int


@dataclass
class ScanSummary:
    """
    Result of a full scan + reconcile run.
    """
    scanned_books: int
    owned_books: int
    updated_count: int
    warnings: List[str] = field(default_factory=list)


@dataclass
class Author:
    id: int
    external_id: str
    name: str
    sort_name: Optional[str] = None
    bio: Optional[str] = None
    photo_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Book:
    id: int
    external_id: str
    title: str
    isbn: Optional[str] = None
    description: Optional[str] = None
    publication_date: Optional[str] = None   # ISO date
    cover_url: Optional[str] = None
    owned: bool = False
    owned_source: OwnedSource = OwnedSource.NONE
    deleted: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class BookWithAuthors:
    book: Book
    authors: List[Author] = field(default_factory=list)


@dataclass
class AuthorWithBooks:
    author: Author
    books: List[Book] = field(default_factory=list)
    # Includes soft-deleted books
    total_book_count: int = 0

    @property
    def active_book_count(self) -> int:
        return len(self.books)


@dataclass
class BookStatus:
    exists: bool
    deleted: bool
    book_id: Optional[int] = None
