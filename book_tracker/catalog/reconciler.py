import logging
import sqlite3
import threading
from contextlib import nullcontext
from typing import Optional, Sequence

from ..database.ops import CatalogRepository
from ..exceptions import ReconciliationFailed
from ..models import OwnershipCandidate, ReconcileStats


class OwnershipReconciler:
    """
    Applies a scan's candidates to the catalog's ownership flags.

    Filesystem-derived ownership is rebuilt from scratch on every run:
    all 'filesystem' rows are reset, then matching rows are set again.
    Rows tagged 'manual' are never touched.
    """
    def __init__(self, repo: CatalogRepository, write_lock: Optional[threading.Lock] = None):
        self.repo = repo
        self.write_lock = write_lock

    def reconcile(self,
                  candidates: Sequence[OwnershipCandidate],
                  scanned_count: Optional[int] = None) -> ReconcileStats:
        """
        Runs reset + match as one transaction.

        Args:
            scanned_count: Entries observed by the triggering scan
                           (candidates + malformed). Defaults to len(candidates).

        Raises:
            ReconciliationFailed: the transaction failed and was rolled back.
        """
        if scanned_count is None:
            scanned_count = len(candidates)

        logging.info(f"Reconciling ownership for {len(candidates)} candidates...")

        with self.write_lock or nullcontext():
            try:
                with self.repo.transaction():
                    before = self.repo.ownership_snapshot()

                    # 1. Reset: books removed from disk lose filesystem ownership
                    reset = self.repo.reset_filesystem_ownership()

                    # 2. Match
                    matched = self.repo.set_owned_by_candidates(candidates)

                    after = self.repo.ownership_snapshot()
                    owned_count = self._count_owned(candidates)
            except sqlite3.Error as e:
                logging.error(f"Ownership reconciliation failed, catalog rolled back: {e}")
                raise ReconciliationFailed(e) from e

        # Reset + re-match of the same row is not a change
        updated = sum(1 for book_id, state in after.items() if before.get(book_id) != state)

        logging.debug(f"Reset {reset} filesystem rows, matched {matched} rows")
        logging.info(
            f"Ownership reconciliation complete: scanned={scanned_count} "
            f"owned={owned_count} updated={updated}"
        )

        return ReconcileStats(
            scanned_count=scanned_count,
            owned_count=owned_count,
            updated_count=updated,
        )

    def _count_owned(self, candidates: Sequence[OwnershipCandidate]) -> int:
        """Distinct candidates matching at least one book that is now owned."""
        owned = 0
        for author_name, book_title in {c.key for c in candidates}:
            books = self.repo.find_by_author_name_and_title(author_name, book_title)
            if any(b.owned for b in books):
                owned += 1
        return owned
