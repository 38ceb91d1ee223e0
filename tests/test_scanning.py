import threading
import time

import pytest
from book_tracker.exceptions import CollectionRootUnavailable, ScanFailed
from book_tracker.models import OwnershipCandidate
from book_tracker.scanning.collection import OwnershipScanner, normalize_book_title


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def count_walks(monkeypatch, scanner):
    """Wraps scanner._walk and returns a list that grows by one per traversal."""
    calls = []
    original = scanner._walk

    def wrapper(root):
        calls.append(root)
        return original(root)

    monkeypatch.setattr(scanner, "_walk", wrapper)
    return calls


def test_normalize_book_title():
    assert normalize_book_title("Dune (1965)") == "Dune"
    assert normalize_book_title("Dune") == "Dune"
    assert normalize_book_title("  Emma   (hardcover)  ") == "Emma"
    # Only the last parenthetical goes
    assert normalize_book_title("Foundation (Book 1) (1951)") == "Foundation (Book 1)"
    assert normalize_book_title("(1999)") == ""


def test_scan_extracts_candidates(make_collection):
    root = make_collection({
        "Frank Herbert": ["Dune (1965)", "Children of Dune"],
        "Agatha Christie": ["And Then There Were None"],
    })
    scanner = OwnershipScanner(root)

    candidates = scanner.scan()

    assert candidates == [
        OwnershipCandidate("Agatha Christie", "And Then There Were None"),
        OwnershipCandidate("Frank Herbert", "Children of Dune"),
        OwnershipCandidate("Frank Herbert", "Dune"),
    ]


def test_is_owned_is_case_insensitive(make_collection):
    root = make_collection({"Jane Doe": ["Some Book"]})
    scanner = OwnershipScanner(root)
    scanner.scan()

    assert scanner.is_owned("jane Doe", "some BOOK")
    assert scanner.is_owned("  JANE DOE ", "Some Book  ")
    assert not scanner.is_owned("Jane Doe", "Some Other Book")
    assert not scanner.is_owned("John Doe", "Some Book")


def test_is_owned_false_before_any_scan(make_collection):
    root = make_collection({"Jane Doe": ["Some Book"]})
    scanner = OwnershipScanner(root)

    assert not scanner.is_owned("Jane Doe", "Some Book")
    # is_owned never triggers a scan
    assert scanner.get_cache_info().size == 0


def test_malformed_entries_are_reported_not_fatal(make_collection):
    root = make_collection({"Jane Doe": ["Some Book", "(1999)"]})
    (root / "Jane Doe" / "notes.txt").write_text("not a book")
    (root / "readme.txt").write_text("level one files are outside the layout")
    (root / ".hidden").mkdir()
    (root / ".hidden" / "Secret Book").mkdir()
    (root / "Jane Doe" / ".DS_Store").write_text("")

    scanner = OwnershipScanner(root)
    report = scanner.scan_report()

    assert report.candidates == (OwnershipCandidate("Jane Doe", "Some Book"),)
    assert len(report.errors) == 2
    assert {e.path.name for e in report.errors} == {"(1999)", "notes.txt"}
    assert report.entries_scanned == 3


def test_scan_within_ttl_walks_once(monkeypatch, make_collection):
    root = make_collection({"Jane Doe": ["Some Book"]})
    clock = FakeClock()
    scanner = OwnershipScanner(root, ttl_seconds=3600, clock=clock)
    walks = count_walks(monkeypatch, scanner)

    first = scanner.scan()
    clock.now += 3599
    second = scanner.scan()

    assert len(walks) == 1
    assert first == second


def test_force_refresh_always_walks(monkeypatch, make_collection):
    root = make_collection({"Jane Doe": ["Some Book"]})
    scanner = OwnershipScanner(root, clock=FakeClock())
    walks = count_walks(monkeypatch, scanner)

    scanner.scan()
    scanner.scan(force_refresh=True)
    scanner.scan(force_refresh=True)

    assert len(walks) == 3


def test_cache_expires_after_ttl(monkeypatch, make_collection):
    root = make_collection({"Jane Doe": ["Some Book"]})
    clock = FakeClock()
    scanner = OwnershipScanner(root, ttl_seconds=60, clock=clock)
    walks = count_walks(monkeypatch, scanner)

    scanner.scan()
    (root / "Jane Doe" / "New Book").mkdir()
    clock.now += 61
    candidates = scanner.scan()

    assert len(walks) == 2
    assert OwnershipCandidate("Jane Doe", "New Book") in candidates


def test_empty_result_is_not_reused(monkeypatch, make_collection):
    root = make_collection({})
    scanner = OwnershipScanner(root, clock=FakeClock())
    walks = count_walks(monkeypatch, scanner)

    assert scanner.scan() == []
    assert scanner.scan() == []
    assert len(walks) == 2


def test_missing_root_fails_and_keeps_cache(make_collection, tmp_path):
    root = make_collection({"Jane Doe": ["Some Book"]})
    scanner = OwnershipScanner(root)
    scanner.scan()

    with pytest.raises(CollectionRootUnavailable):
        scanner.scan(tmp_path / "does-not-exist", force_refresh=True)

    assert scanner.is_owned("Jane Doe", "Some Book")
    assert scanner.get_cache_info().size == 1


def test_root_that_is_a_file_is_unavailable(tmp_path):
    not_a_dir = tmp_path / "file.txt"
    not_a_dir.write_text("x")

    with pytest.raises(CollectionRootUnavailable):
        OwnershipScanner(not_a_dir).scan()


def test_unconfigured_root_is_unavailable():
    with pytest.raises(CollectionRootUnavailable):
        OwnershipScanner().scan()


def test_io_error_during_walk_raises_scan_failed(monkeypatch, make_collection):
    root = make_collection({"Jane Doe": ["Some Book"]})
    clock = FakeClock()
    scanner = OwnershipScanner(root, clock=clock)
    scanner.scan()

    original = scanner._list_dir

    def failing(directory):
        if directory != root:
            raise PermissionError(13, "Permission denied", str(directory))
        return original(directory)

    monkeypatch.setattr(scanner, "_list_dir", failing)

    with pytest.raises(ScanFailed) as exc_info:
        scanner.scan(force_refresh=True)

    assert isinstance(exc_info.value.cause, PermissionError)
    # Previous snapshot survives
    assert scanner.is_owned("Jane Doe", "Some Book")


def test_invalidate_cache_forces_rescan(monkeypatch, make_collection):
    root = make_collection({"Jane Doe": ["Some Book"]})
    scanner = OwnershipScanner(root, clock=FakeClock())
    walks = count_walks(monkeypatch, scanner)

    scanner.scan()
    scanner.invalidate_cache()

    assert not scanner.is_owned("Jane Doe", "Some Book")
    info = scanner.get_cache_info()
    assert info.size == 0
    assert info.age is None

    scanner.scan()
    assert len(walks) == 2


def test_cache_info(make_collection):
    root = make_collection({"Jane Doe": ["Some Book", "Another Book"]})
    clock = FakeClock()
    scanner = OwnershipScanner(root, ttl_seconds=100, clock=clock)

    info = scanner.get_cache_info()
    assert (info.size, info.age, info.expired) == (0, None, True)

    scanner.scan()
    clock.now += 40
    info = scanner.get_cache_info()
    assert info.size == 2
    assert info.age == 40
    assert not info.expired
    assert info.last_scan_at is not None

    clock.now += 61
    assert scanner.get_cache_info().expired


def test_callers_cannot_alter_the_cache(make_collection):
    root = make_collection({"Jane Doe": ["Some Book"]})
    scanner = OwnershipScanner(root, clock=FakeClock())

    scanner.scan().clear()
    report = scanner.scan_report()

    assert report.from_cache
    assert isinstance(report.candidates, tuple)
    assert scanner.scan() == [OwnershipCandidate("Jane Doe", "Some Book")]
    assert scanner.get_cache_info().size == 1


def test_concurrent_scans_share_one_traversal(monkeypatch, make_collection):
    root = make_collection({"Jane Doe": ["Some Book"]})
    scanner = OwnershipScanner(root)

    started = threading.Event()
    release = threading.Event()
    walks = []
    original = scanner._walk

    def slow_walk(path):
        walks.append(path)
        started.set()
        release.wait(timeout=5)
        return original(path)

    monkeypatch.setattr(scanner, "_walk", slow_walk)

    results = []
    first = threading.Thread(target=lambda: results.append(scanner.scan()))
    first.start()
    assert started.wait(timeout=5)

    second = threading.Thread(target=lambda: results.append(scanner.scan(force_refresh=True)))
    second.start()
    time.sleep(0.1)
    release.set()

    first.join(timeout=5)
    second.join(timeout=5)

    assert len(walks) == 1
    assert results == [[OwnershipCandidate("Jane Doe", "Some Book")]] * 2
