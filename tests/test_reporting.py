import csv

from book_tracker.models import OwnedSource
from book_tracker.reporting import REPORT_HEADERS, ReportGenerator
from book_tracker.scanning.collection import OwnershipScanner


def read_report(path):
    with open(path, "r", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def test_report_compares_catalog_with_disk(tmp_path, repo, add_book, make_collection):
    """Each active book gets one row; On Disk reflects the last scan, not the stored flag."""
    root = make_collection({"Jane Doe": ["On Shelf (2001)"]})
    scanner = OwnershipScanner(root)
    scanner.scan()

    shelf = add_book("Jane Doe", "On Shelf")
    manual = add_book("Jane Doe", "Lent Out", owned=True, source=OwnedSource.MANUAL)
    gone = add_book("Jane Doe", "Deleted")
    repo.mark_deleted(gone.id)
    repo.conn.commit()

    output_csv = tmp_path / "report.csv"
    count = ReportGenerator(repo, scanner).generate_ownership_report(output_csv, show_progress=False)

    rows = read_report(output_csv)
    assert count == 2
    assert list(rows[0].keys()) == REPORT_HEADERS

    by_id = {int(r["Book ID"]): r for r in rows}
    assert set(by_id) == {shelf.id, manual.id}
    assert by_id[shelf.id]["On Disk"] == "Yes"
    assert by_id[shelf.id]["Owned"] == "No"
    assert by_id[manual.id]["On Disk"] == "No"
    assert by_id[manual.id]["Owned Source"] == "manual"
    assert by_id[manual.id]["Authors"] == "Jane Doe"


def test_report_before_any_scan(tmp_path, repo, add_book):
    add_book("Jane Doe", "Some Book")
    add_book("John Roe", "Another Book")

    output_csv = tmp_path / "report.csv"
    ReportGenerator(repo, OwnershipScanner()).generate_ownership_report(output_csv, show_progress=False)

    assert [r["On Disk"] for r in read_report(output_csv)] == ["Unknown", "Unknown"]


def test_report_with_empty_catalog(tmp_path, repo):
    output_csv = tmp_path / "report.csv"

    count = ReportGenerator(repo, OwnershipScanner()).generate_ownership_report(output_csv, show_progress=False)

    assert count == 0
    assert read_report(output_csv) == []
