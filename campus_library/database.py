import sqlite3
import os
import logging
import tempfile
from typing import Optional

from dotenv import load_dotenv

# Load .env before reading the database path, whatever the import order is.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE (explicit override)
# 2) a per-process file in the temp directory
DATABASE_FILE = (
    os.environ.get("LIBRARY_DB_FILE")
    or os.path.join(tempfile.gettempdir(), f"campus_library_{os.getpid()}.db")
)


def use_database(db_file: Optional[str]) -> str:
    """Point the module-level helpers at another database file and return the active path."""
    global DATABASE_FILE
    if db_file:
        DATABASE_FILE = db_file
    return DATABASE_FILE


def get_db_connection() -> sqlite3.Connection:
    """Open a connection to the SQLite database."""
    conn = sqlite3.connect(DATABASE_FILE, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables() -> None:
    """Create the tables the application needs if they do not exist yet.

    The table names keep the existing collection names: ``usuarios``
    for users, ``libros`` for the catalog and ``prestamos`` for loans.
    """
    conn = get_db_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS usuarios (
                id TEXT PRIMARY KEY,
                student_id TEXT UNIQUE NOT NULL,
                first_name TEXT NOT NULL,
                last_name TEXT,
                birth_date TEXT,
                sex TEXT,
                phone TEXT,
                email TEXT,
                password_hash TEXT NOT NULL,
                area TEXT,
                career TEXT,
                favorite_ids TEXT,  -- JSON array, keeps insertion order
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS libros (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                available BOOLEAN NOT NULL DEFAULT 1,
                image TEXT,
                image_url TEXT,
                description TEXT,
                genre TEXT,
                isbn TEXT,
                publisher TEXT,
                published_date TEXT,
                units INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS prestamos (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                book_id TEXT NOT NULL,
                book_data TEXT NOT NULL,  -- JSON snapshot of the book at request time
                requested_at TEXT NOT NULL,
                pickup_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                returned_at TEXT,
                status TEXT NOT NULL CHECK(status IN ('active', 'expired', 'delivered', 'cancelled')),
                active BOOLEAN NOT NULL,
                FOREIGN KEY (user_id) REFERENCES usuarios(id) ON DELETE CASCADE
            )
        """)

        # Outbound API usage tracking
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS api_usage_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                api_name TEXT NOT NULL,
                endpoint TEXT NOT NULL,
                success BOOLEAN NOT NULL,
                response_time_ms INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_usuarios_student_id ON usuarios(student_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_libros_title ON libros(title)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_libros_author ON libros(author)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_libros_isbn ON libros(isbn)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_prestamos_user_active ON prestamos(user_id, active)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_prestamos_status ON prestamos(status, due_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_api_usage_logs_created_at ON api_usage_logs(created_at)")

        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    path = use_database(db_file)
    create_tables()
    logger.debug(f"Database ready at {path}")
