"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the catalog schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Authors
        conn.execute("""
        CREATE TABLE IF NOT EXISTS authors (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            external_id     TEXT NOT NULL UNIQUE,     -- Catalog API id
            name            TEXT NOT NULL,
            sort_name       TEXT,                     -- "Last, First"
            bio             TEXT,
            photo_url       TEXT,
            created_at      TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at      TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            CHECK(length(name) > 0)
        );
        """)

        # 3. Books
        # owned_source is provenance only; 'manual' may be owned or not owned.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS books (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            external_id      TEXT NOT NULL UNIQUE,
            title            TEXT NOT NULL,
            isbn             TEXT,
            description      TEXT,
            publication_date TEXT,
            cover_url        TEXT,
            owned            INTEGER NOT NULL DEFAULT 0,
            owned_source     TEXT NOT NULL DEFAULT 'none',
            deleted          INTEGER NOT NULL DEFAULT 0,
            created_at       TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at       TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            CHECK(length(title) > 0),
            CHECK(owned IN (0, 1)),
            CHECK(deleted IN (0, 1)),
            CHECK(owned_source IN ('none', 'filesystem', 'manual'))
        );
        """)

        # 4. Linking Table (Book <-> Author)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS book_authors (
            book_id          INTEGER NOT NULL,
            author_id        INTEGER NOT NULL,
            author_order     INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (book_id, author_id),
            FOREIGN KEY(book_id) REFERENCES books(id) ON DELETE CASCADE,
            FOREIGN KEY(author_id) REFERENCES authors(id) ON DELETE CASCADE,
            CHECK(author_order >= 0)
        );
        """)

        # 5. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_authors_name ON authors(name);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_authors_sort_name ON authors(sort_name COLLATE NOCASE);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_deleted ON books(deleted);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_isbn ON books(isbn);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_owned_source ON books(owned_source);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_bookauthor_author ON book_authors(author_id);")

        # 6. Timestamps
        conn.execute("""
        CREATE TRIGGER IF NOT EXISTS update_books_timestamp
        AFTER UPDATE ON books
        BEGIN
            UPDATE books SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
        END;
        """)
        conn.execute("""
        CREATE TRIGGER IF NOT EXISTS update_authors_timestamp
        AFTER UPDATE ON authors
        BEGIN
            UPDATE authors SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
        END;
        """)

    logging.debug("Database schema initialized.")
