import csv
import logging
from pathlib import Path
from typing import List

from tqdm import tqdm

from .database.ops import CatalogRepository
from .models import Book
from .scanning.collection import OwnershipScanner

REPORT_HEADERS = [
    "Book ID",
    "Title",
    "Authors",
    "Owned",
    "Owned Source",
    "On Disk",
]

class ReportGenerator:
    def __init__(self, repo: CatalogRepository, scanner: OwnershipScanner):
        self.repo = repo
        self.scanner = scanner

    def generate_ownership_report(self, output_csv: Path, show_progress: bool = True) -> int:
        """
        Writes one CSV row per active book with its ownership state and
        whether the last collection scan saw it on disk.
        Returns the number of rows written.
        """
        books = self._load_active_books()
        scanned = self.scanner.get_cache_info().last_scan_at is not None

        logging.info(f"Generating ownership report for {len(books)} books -> {output_csv}")

        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(REPORT_HEADERS)

            for book in tqdm(books, desc="Reporting", disable=not show_progress):
                authors = self.repo.authors_for_book(book.id)
                if not scanned:
                    on_disk = "Unknown"
                elif any(self.scanner.is_owned(a.name, book.title) for a in authors):
                    on_disk = "Yes"
                else:
                    on_disk = "No"

                writer.writerow([
                    book.id,
                    book.title,
                    "; ".join(a.name for a in authors),
                    "Yes" if book.owned else "No",
                    book.owned_source.value,
                    on_disk,
                ])

        logging.info(f"Report complete. Wrote {len(books)} rows.")
        return len(books)

    def _load_active_books(self) -> List[Book]:
        """Pages through every non-deleted book."""
        books: List[Book] = []
        page_size = 500
        offset = 0
        while True:
            page = self.repo.list_books(limit=page_size, offset=offset)
            books.extend(page)
            if len(page) < page_size:
                return books
            offset += page_size
