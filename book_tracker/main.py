import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .catalog.records import CatalogRecord
from .config import DEFAULT_LIST_LIMIT, Settings
from .core import BookTrackerApp
from .exceptions import BookTrackerError, OwnershipScanError
from .reporting import ReportGenerator

def setup_logging(level: int, log_file: Optional[Path] = None):
    """Sets up logging to the console and, optionally, a file."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
        force=True,
    )

def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="Book Tracker: personal library and ownership scanning")

    p.add_argument("--db", type=Path, default=None, help="Path to the SQLite catalog (default: $DATABASE_PATH or ./data/books.db)")
    p.add_argument("--collection-root", type=Path, default=None, help="Collection root laid out as <root>/<Author>/<Title>/ (default: $COLLECTION_ROOT)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")

    sub = p.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan the collection and update ownership")
    scan.add_argument("--force-refresh", action="store_true", help="Ignore the cached scan")

    books = sub.add_parser("books", help="List books in the library")
    books.add_argument("--limit", type=int, default=DEFAULT_LIST_LIMIT)
    books.add_argument("--offset", type=int, default=0)

    authors = sub.add_parser("authors", help="List authors, or show one author's books")
    authors.add_argument("--id", type=int, default=None, dest="author_id", help="Show this author and their books")
    authors.add_argument("--limit", type=int, default=DEFAULT_LIST_LIMIT)
    authors.add_argument("--offset", type=int, default=0)

    status = sub.add_parser("status", help="Check whether a catalog book is in the library")
    status.add_argument("external_id", help="Catalog (API) id of the book")

    own = sub.add_parser("own", help="Manually mark a book as owned")
    own.add_argument("book_id", type=int)

    disown = sub.add_parser("disown", help="Manually mark a book as not owned")
    disown.add_argument("book_id", type=int)

    delete = sub.add_parser("delete", help="Delete a book (it will not be re-imported)")
    delete.add_argument("book_id", type=int)

    imp = sub.add_parser("import", help="Import catalog records from a JSON file")
    imp.add_argument("file", type=Path, help="JSON object or list of objects from the catalog API")

    report = sub.add_parser("report", help="Write an ownership CSV report")
    report.add_argument("--output", type=Path, default=Path("ownership_report.csv"))

    return p.parse_args(argv)

def load_settings(args) -> Settings:
    settings = Settings.from_env()
    if args.db:
        settings.database_path = args.db
    if args.collection_root:
        settings.collection_root = args.collection_root
    if args.verbose:
        settings.log_level = logging.DEBUG
    return settings

def load_records(path: Path) -> List[Dict[str, Any]]:
    """Raw catalog payloads from a JSON file holding one object or a list."""
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ValueError(f"{path} must hold a JSON object or a list of objects")
    return data

def cmd_scan(app: BookTrackerApp, args) -> int:
    summary = app.trigger_scan(force_refresh=args.force_refresh)
    print(f"Scanned books: {summary.scanned_books}")
    print(f"Owned books:   {summary.owned_books}")
    print(f"Updated:       {summary.updated_count}")
    if summary.warnings:
        print(f"Warnings ({len(summary.warnings)}):")
        for w in summary.warnings:
            print(f"  {w}")
    return 0

def cmd_books(app: BookTrackerApp, args) -> int:
    rows = app.books.list_books(limit=args.limit, offset=args.offset)
    if not rows:
        print("No books in the library.")
        return 0

    print("id   | owned | source     | title                                    | authors")
    print("-----+-------+------------+------------------------------------------+--------")
    for entry in rows:
        b = entry.book
        authors = ", ".join(a.name for a in entry.authors)
        print(f"{b.id:4d} | {('yes' if b.owned else 'no').ljust(5)} | {b.owned_source.value.ljust(10)} | {b.title[:40].ljust(40)} | {authors}")
    print(f"Showing {len(rows)} of {app.repo.count_books()} books")
    return 0

def cmd_authors(app: BookTrackerApp, args) -> int:
    if args.author_id is not None:
        entry = app.authors.get_author_with_books(args.author_id)
        print(f"{entry.author.name} ({entry.author.sort_name})")
        print(f"Books: {entry.active_book_count} active, {entry.total_book_count} total")
        for b in entry.books:
            print(f"  {b.id:4d} | {('owned' if b.owned else '-').ljust(5)} | {b.title}")
        return 0

    rows = app.authors.list_authors(limit=args.limit, offset=args.offset)
    if not rows:
        print("No authors in the library.")
        return 0
    for a in rows:
        print(f"{a.id:4d} | {a.sort_name or a.name}")
    return 0

def cmd_status(app: BookTrackerApp, args) -> int:
    status = app.books.check_book_status(args.external_id)
    if not status.exists:
        print(f"{args.external_id}: not in library")
    elif status.deleted:
        print(f"{args.external_id}: deleted (book {status.book_id}), will not be re-imported")
    else:
        print(f"{args.external_id}: in library (book {status.book_id})")
    return 0

def cmd_ownership(app: BookTrackerApp, args, owned: bool) -> int:
    entry = app.books.update_ownership(args.book_id, owned=owned, manual=True)
    print(f"Book {entry.book.id} '{entry.book.title}': owned={entry.book.owned} ({entry.book.owned_source.value})")
    return 0

def cmd_delete(app: BookTrackerApp, args) -> int:
    entry = app.books.delete_book(args.book_id)
    print(f"Deleted book {entry.book.id} '{entry.book.title}'")
    return 0

def cmd_import(app: BookTrackerApp, args) -> int:
    items = load_records(args.file)

    # Import checks ownership against the scan cache, so fill it first
    if app.scanner.collection_root:
        try:
            app.scanner.scan()
        except OwnershipScanError as e:
            logging.warning(f"Collection scan failed, importing without ownership detection: {e}")

    failures = 0
    for item in items:
        try:
            entry = app.books.import_book(CatalogRecord.from_api(item))
            print(f"Imported {entry.book.id} '{entry.book.title}' (owned={entry.book.owned})")
        except BookTrackerError as e:
            failures += 1
            logging.error(f"Failed to import {item.get('id')!r} '{item.get('title')}': {e}")
    return 1 if failures else 0

def cmd_report(app: BookTrackerApp, args) -> int:
    if app.scanner.collection_root:
        app.scanner.scan()
    reporter = ReportGenerator(app.repo, app.scanner)
    count = reporter.generate_ownership_report(args.output)
    print(f"Wrote {count} rows to {args.output}")
    return 0

COMMANDS = {
    "scan": cmd_scan,
    "books": cmd_books,
    "authors": cmd_authors,
    "status": cmd_status,
    "own": lambda app, args: cmd_ownership(app, args, owned=True),
    "disown": lambda app, args: cmd_ownership(app, args, owned=False),
    "delete": cmd_delete,
    "import": cmd_import,
    "report": cmd_report,
}

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = load_settings(args)
    setup_logging(settings.log_level, args.log_file)

    logging.debug(f"Database: {settings.database_path}")
    logging.debug(f"Collection root: {settings.collection_root}")

    try:
        with BookTrackerApp.from_settings(settings) as app:
            return COMMANDS[args.command](app, args)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        return 1
    except OwnershipScanError as e:
        logging.error(f"Ownership scan failed ({e.phase} phase): {e}")
        return 1
    except BookTrackerError as e:
        logging.error(str(e))
        return 1
    except (OSError, ValueError) as e:
        logging.error(f"{type(e).__name__}: {e}")
        return 1

if __name__ == "__main__":
    sys.exit(main())
