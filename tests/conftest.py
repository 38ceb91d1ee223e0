import pytest
import sqlite3
from book_tracker.database.schema import init_schema
from book_tracker.database.ops import CatalogRepository
from book_tracker.models import OwnedSource

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    c.execute("PRAGMA foreign_keys=ON;")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def repo(conn):
    """Returns a CatalogRepository attached to the in-memory DB."""
    return CatalogRepository(conn)

@pytest.fixture
def add_book(repo):
    """
    Factory: add_book("Agatha Christie", "And Then There Were None", owned=..., source=...)
    Authors are reused by name.
    """
    counter = {'n': 0}

    def _add(author_name, title, owned=False, source=OwnedSource.NONE):
        counter['n'] += 1
        author = repo.find_author_by_name(author_name)
        if author is None:
            author = repo.create_author(f"a-{counter['n']}", author_name)
        book = repo.create_book(f"b-{counter['n']}", title, owned=owned, owned_source=source)
        repo.link_authors(book.id, [author.id])
        repo.conn.commit()
        return book

    return _add

@pytest.fixture
def make_collection(tmp_path):
    """
    Factory building <root>/<Author>/<Title>/ trees from a dict of
    {author: [titles]}.
    """
    def _make(layout, root_name="Root"):
        root = tmp_path / root_name
        root.mkdir(exist_ok=True)
        for author, titles in layout.items():
            author_dir = root / author
            author_dir.mkdir(exist_ok=True)
            for title in titles:
                (author_dir / title).mkdir(exist_ok=True)
        return root

    return _make
