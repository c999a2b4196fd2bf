import json
import logging
import sqlite3
from typing import Callable, List, Optional

from campus_library.book import Book
from campus_library.database import get_db_connection, initialize_database
from campus_library.exceptions import BookNotFoundError, UserNotFoundError
from campus_library.library import Library

logger = logging.getLogger(__name__)


class FavoritesService:
    """Per-user favorite books, kept as an ordered list of book ids."""

    def __init__(self, library: Optional[Library] = None, db_file: Optional[str] = None) -> None:
        initialize_database(db_file)
        self.library = library or Library()

    def _read_ids(self, conn: sqlite3.Connection, user_id: str) -> List[str]:
        row = conn.execute("SELECT favorite_ids FROM usuarios WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise UserNotFoundError(f"User {user_id} not found.")
        return json.loads(row["favorite_ids"]) if row["favorite_ids"] else []

    def _update_ids(self, user_id: str, change: Callable[[List[str]], List[str]]) -> List[str]:
        """Read-modify-write of the id list inside one write transaction."""
        conn = get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            ids = change(self._read_ids(conn, user_id))
            conn.execute(
                "UPDATE usuarios SET favorite_ids = ? WHERE id = ?", (json.dumps(ids), user_id)
            )
            conn.commit()
            return ids
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def add_favorite(self, user_id: str, book_id: str) -> None:
        """Add a book to the user's favorites; adding twice is a no-op."""
        if self.library.find_book(book_id) is None:
            raise BookNotFoundError(f"Book {book_id} not found.")
        self._update_ids(user_id, lambda ids: ids if book_id in ids else ids + [book_id])
        logger.info(f"Favorite added: user={user_id} book={book_id}")

    def remove_favorite(self, user_id: str, book_id: str) -> None:
        self._update_ids(user_id, lambda ids: [i for i in ids if i != book_id])
        logger.info(f"Favorite removed: user={user_id} book={book_id}")

    def toggle_favorite(self, user_id: str, book_id: str) -> bool:
        """Flip the favorite state and return the new one (True = now a favorite)."""
        if self.is_favorite(user_id, book_id):
            self.remove_favorite(user_id, book_id)
            return False
        self.add_favorite(user_id, book_id)
        return True

    def is_favorite(self, user_id: str, book_id: str) -> bool:
        return book_id in self.get_favorite_ids(user_id)

    def get_favorite_ids(self, user_id: str) -> List[str]:
        conn = get_db_connection()
        try:
            return self._read_ids(conn, user_id)
        finally:
            conn.close()

    def get_favorite_books(self, user_id: str) -> List[Book]:
        """Favorite books in the order they were added; ids no longer in the catalog are skipped."""
        return self.library.find_books(self.get_favorite_ids(user_id))
