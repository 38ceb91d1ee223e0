import logging
from pathlib import Path
from typing import Optional

from .catalog.authors import AuthorService
from .catalog.books import BookService
from .catalog.reconciler import OwnershipReconciler
from .config import Settings
from .database.db import DBManager
from .database.ops import CatalogRepository
from .exceptions import DatabaseError, OwnershipScanError, ReconciliationFailed
from .models import ScanSummary
from .scanning.collection import OwnershipScanner


class BookTrackerApp:
    """
    Wires the catalog database, the collection scanner and the services
    together. Build one per process; the scanner (and its cache) is shared
    by everything the app hands out.
    """
    def __init__(self,
                 db_path: Path,
                 scanner: Optional[OwnershipScanner] = None,
                 collection_root: Optional[Path] = None,
                 scan_ttl_seconds: Optional[float] = None):
        self.db_manager = DBManager(db_path)
        if scanner is None:
            kwargs = {} if scan_ttl_seconds is None else {'ttl_seconds': scan_ttl_seconds}
            scanner = OwnershipScanner(collection_root, **kwargs)
        self.scanner = scanner
        self._repo: Optional[CatalogRepository] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookTrackerApp":
        return cls(
            settings.database_path,
            collection_root=settings.collection_root,
            scan_ttl_seconds=settings.scan_ttl_seconds,
        )

    @property
    def repo(self) -> CatalogRepository:
        if self._repo is None:
            self._repo = CatalogRepository(self.db_manager.connect())
        return self._repo

    @property
    def books(self) -> BookService:
        return BookService(self.repo, self.scanner, self.db_manager.write_lock)

    @property
    def authors(self) -> AuthorService:
        return AuthorService(self.repo)

    def reconciler(self) -> OwnershipReconciler:
        return OwnershipReconciler(self.repo, self.db_manager.write_lock)

    def trigger_scan(self, force_refresh: bool = False) -> ScanSummary:
        """
        Scans the collection (or reuses the cached scan) and applies the
        result to the catalog.

        Raises:
            CollectionRootUnavailable, ScanFailed: scan phase failed; catalog untouched.
            ReconciliationFailed: reconcile phase failed; catalog rolled back.
        """
        logging.info(f"Ownership scan requested (force_refresh={force_refresh})")

        # --- Step 1: Scan ---
        try:
            report = self.scanner.scan_report(force_refresh=force_refresh)
        except OwnershipScanError as e:
            logging.error(f"Ownership scan failed during {e.phase} phase: {e}")
            raise

        # --- Step 2: Reconcile ---
        try:
            stats = self.reconciler().reconcile(report.candidates, scanned_count=report.entries_scanned)
        except DatabaseError as e:
            # Catalog could not be opened; nothing was written
            logging.error(f"Ownership scan failed during reconcile phase: {e}")
            raise ReconciliationFailed(e) from e
        except OwnershipScanError as e:
            logging.error(f"Ownership scan failed during {e.phase} phase: {e}")
            raise

        summary = ScanSummary(
            scanned_books=stats.scanned_count,
            owned_books=stats.owned_count,
            updated_count=stats.updated_count,
            warnings=[str(err) for err in report.errors],
        )
        logging.info(
            f"Ownership scan completed: scanned={summary.scanned_books} "
            f"owned={summary.owned_books} updated={summary.updated_count} "
            f"cached={report.from_cache}"
        )
        return summary

    def close(self):
        self._repo = None
        self.db_manager.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
