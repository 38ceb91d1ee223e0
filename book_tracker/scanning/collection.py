import os
import re
import time
import logging
import threading
from dataclasses import replace
from datetime import datetime, UTC
from pathlib import Path
from typing import Callable, FrozenSet, List, Optional, Tuple

from .. import config
from ..exceptions import CollectionRootUnavailable, ScanFailed
from ..models import CacheInfo, MalformedEntry, OwnershipCandidate, ScanReport, match_key

_TITLE_SUFFIX = re.compile(config.TITLE_SUFFIX_PATTERN)


def normalize_book_title(dir_name: str) -> str:
    """'Dune (1965)' -> 'Dune'. Only one trailing parenthetical is stripped."""
    return _TITLE_SUFFIX.sub('', dir_name, count=1).strip()


class OwnershipScanner:
    """
    Reads the collection laid out as <root>/<Author>/<Title>/ and keeps the
    result cached for `ttl_seconds`.

    One instance is shared by everything in the process that needs to know
    what is on disk. At most one traversal runs at a time; callers that
    waited on it get its result instead of walking again.
    """
    def __init__(self,
                 collection_root: Optional[Path] = None,
                 ttl_seconds: float = config.DEFAULT_SCAN_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.collection_root = Path(collection_root) if collection_root else None
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        self._report: Optional[ScanReport] = None
        self._owned_keys: FrozenSet[Tuple[str, str]] = frozenset()
        self._last_scan: Optional[float] = None
        self._generation = 0

        # _state_lock guards the cache fields, _scan_lock allows one traversal
        self._state_lock = threading.Lock()
        self._scan_lock = threading.Lock()

    def scan(self, root: Optional[Path] = None, force_refresh: bool = False) -> List[OwnershipCandidate]:
        """
        Returns the owned (author, title) candidates, from cache when fresh.

        Raises:
            CollectionRootUnavailable: root missing, not a directory or unreadable.
            ScanFailed: an I/O error interrupted the traversal.
        """
        return list(self.scan_report(root, force_refresh).candidates)

    def scan_report(self, root: Optional[Path] = None, force_refresh: bool = False) -> ScanReport:
        """Like scan(), but returns the full report including malformed entries."""
        root_path = self._resolve_root(root)

        if not force_refresh:
            cached = self._cached_report(root_path)
            if cached:
                return cached

        with self._state_lock:
            generation = self._generation

        with self._scan_lock:
            with self._state_lock:
                # Another caller finished a traversal while we waited for the lock
                if (self._generation != generation and self._report is not None
                        and self._report.root == root_path):
                    return replace(self._report, from_cache=True)

            report = self._walk(root_path)

            with self._state_lock:
                self._report = report
                self._owned_keys = frozenset(c.key for c in report.candidates)
                self._last_scan = self._clock()
                self._generation += 1

        return report

    def is_owned(self, author_name: str, book_title: str) -> bool:
        """
        Exact case-insensitive match against the cached scan. Never scans.
        """
        with self._state_lock:
            keys = self._owned_keys
        return match_key(author_name, book_title) in keys

    def invalidate_cache(self):
        logging.debug("Invalidating ownership cache")
        with self._state_lock:
            self._report = None
            self._owned_keys = frozenset()
            self._last_scan = None
            self._generation += 1

    def get_cache_info(self) -> CacheInfo:
        with self._state_lock:
            report = self._report
            last_scan = self._last_scan

        age = None if last_scan is None else self._clock() - last_scan
        return CacheInfo(
            size=len(report.candidates) if report else 0,
            age=age,
            expired=age is None or age > self.ttl_seconds,
            last_scan_at=report.completed_at if report else None,
        )

    # --- Internals ---

    def _resolve_root(self, root: Optional[Path]) -> Path:
        chosen = root if root is not None else self.collection_root
        if chosen is None:
            raise CollectionRootUnavailable(None, "is not configured")
        return Path(chosen)

    def _cached_report(self, root: Path) -> Optional[ScanReport]:
        with self._state_lock:
            report = self._report
            last_scan = self._last_scan

        if report is None or last_scan is None or report.root != root:
            return None
        # An empty result is never trusted; the next call walks again
        if not report.candidates:
            return None

        age = self._clock() - last_scan
        if age >= self.ttl_seconds:
            return None

        logging.debug(f"Using cached ownership data (age={age:.1f}s, books={len(report.candidates)})")
        return replace(report, from_cache=True)

    def _check_root(self, root: Path):
        if not root.exists():
            raise CollectionRootUnavailable(root, "does not exist")
        if not root.is_dir():
            raise CollectionRootUnavailable(root, "is not a directory")
        if not os.access(root, os.R_OK | os.X_OK):
            raise CollectionRootUnavailable(root, "is not readable")

    def _walk(self, root: Path) -> ScanReport:
        """
        Two-level listing: root/<Author>/<Title>.
        Level-one files are outside the layout and ignored; level-two files
        and nameless entries are reported as malformed.
        """
        logging.info(f"Starting filesystem ownership scan: {root}")
        try:
            self._check_root(root)
        except CollectionRootUnavailable as e:
            logging.error(str(e))
            raise

        candidates: List[OwnershipCandidate] = []
        errors: List[MalformedEntry] = []

        try:
            for author_entry in self._list_dir(root):
                if not author_entry.is_dir():
                    continue
                for book_entry in self._list_dir(Path(author_entry.path)):
                    self._classify(author_entry.name, book_entry, candidates, errors)
        except OSError as e:
            logging.error(f"Filesystem scan failed for {root}: {e}")
            raise ScanFailed(root, e) from e

        logging.info(
            f"Filesystem ownership scan completed: {len(candidates) + len(errors)} entries, "
            f"{len(candidates)} books, {len(errors)} errors"
        )
        if errors:
            logging.warning(f"Scan completed with {len(errors)} malformed entries")
            for err in errors:
                logging.warning(f"  {err}")

        return ScanReport(
            root=root,
            candidates=tuple(candidates),
            errors=tuple(errors),
            completed_at=datetime.now(UTC),
        )

    def _list_dir(self, directory: Path) -> List[os.DirEntry]:
        """Visible entries of one directory, sorted for stable traversal order."""
        with os.scandir(directory) as it:
            entries = [e for e in it if not e.name.startswith('.')]
        entries.sort(key=lambda e: e.name.lower())
        return entries

    def _classify(self,
                  author_dir: str,
                  entry: os.DirEntry,
                  candidates: List[OwnershipCandidate],
                  errors: List[MalformedEntry]):
        path = Path(entry.path)
        if not entry.is_dir():
            errors.append(MalformedEntry(path, "Not a book directory"))
            return

        author_name = author_dir.strip()
        book_title = normalize_book_title(entry.name)
        if not author_name or not book_title:
            errors.append(MalformedEntry(path, "Invalid directory format (missing author or title)"))
            return

        candidates.append(OwnershipCandidate(author_name, book_title))
