import logging
import sqlite3
from typing import List, Optional, Dict, Any

from campus_library.book import Book
from campus_library.config import settings
from campus_library.database import get_db_connection, initialize_database
from campus_library.exceptions import BookNotFoundError, ExternalServiceError, ValidationError
from campus_library.services.google_books_service import GoogleBooksService
from campus_library.validators import ISBNValidator, TextValidator

logger = logging.getLogger(__name__)

BOOK_COLUMNS = (
    "id, title, author, available, image, image_url, description, genre, "
    "isbn, publisher, published_date, units, created_at"
)
UPDATABLE_FIELDS = (
    "title", "author", "available", "image", "image_url", "description",
    "genre", "isbn", "publisher", "published_date", "units",
)

# Academic area -> genres worth recommending to its students
AREA_GENRES: Dict[str, List[str]] = {
    "Negocios": ["Negocios", "Economía", "Administración", "Emprendimiento", "Finanzas", "Marketing", "Gestión"],
    "Gastronomía": ["Cocina", "Gastronomía", "Nutrición", "Repostería", "Bebidas", "Alimentos", "Recetas"],
    "Procesos Industriales": ["Ingeniería", "Producción", "Logística", "Calidad", "Manufactura", "Procesos", "Industrial"],
    "Mantenimiento Industrial": ["Mantenimiento", "Mecánica", "Electricidad", "Instrumentación", "Industrial", "Técnica"],
    "Mecatrónica": ["Robótica", "Electrónica", "Automatización", "Control", "Programación", "Mecatrónica", "Sistemas"],
    "Sistemas Automotrices": ["Automotriz", "Motores", "Electromecánica", "Diseño Automotriz", "Automóviles", "Transporte"],
    "Energías Alternativas y Medio Ambiente": ["Energía", "Medio Ambiente", "Sostenibilidad", "Ecología", "Renovable", "Clima"],
    "Tecnologías de la Información": ["Programación", "Tecnología", "Informática", "Redes", "Base de Datos", "Software", "Computación"],
}


class Library:
    """Manages the book catalog and its persistence."""

    def __init__(self, db_file: Optional[str] = None,
                 google_books: Optional[GoogleBooksService] = None) -> None:
        initialize_database(db_file)
        if google_books is not None:
            self.google_books = google_books
        else:
            self.google_books = GoogleBooksService() if settings.enable_google_books else None

    # ------------------------- Core operations ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Insert a book. Ids are unique; a duplicate raises ValidationError."""
        book.title = TextValidator.require(book.title, "Title")
        book.author = TextValidator.require(book.author, "Author")
        if book.units < 0:
            raise ValidationError("Units cannot be negative.")
        if book.isbn:
            book.isbn = ISBNValidator.normalize_isbn(book.isbn) or book.isbn

        conn = get_db_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO libros (
                    id, title, author, available, image, image_url, description,
                    genre, isbn, publisher, published_date, units
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    book.id, book.title, book.author, book.available, book.image, book.image_url,
                    book.description, book.genre, book.isbn, book.publisher, book.published_date,
                    book.units,
                ),
            )
            conn.commit()
            row = cursor.execute("SELECT created_at FROM libros WHERE id = ?", (book.id,)).fetchone()
            if row:
                book.created_at = row[0]
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Book with id {book.id} already exists.") from e
        finally:
            conn.close()
        logger.info(f"Book added to catalog: {book.id} ({book.title})")
        return book

    def remove_book(self, book_id: str) -> bool:
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM libros WHERE id = ?", (book_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def list_books(self) -> List[Book]:
        """All books in the catalog, fresh on every call."""
        conn = get_db_connection()
        try:
            rows = conn.execute(f"SELECT {BOOK_COLUMNS} FROM libros ORDER BY title").fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def find_book(self, book_id: str) -> Optional[Book]:
        conn = get_db_connection()
        try:
            row = conn.execute(f"SELECT {BOOK_COLUMNS} FROM libros WHERE id = ?", (book_id,)).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def get_book(self, book_id: str) -> Book:
        """Like find_book, but raises BookNotFoundError."""
        book = self.find_book(book_id)
        if book is None:
            raise BookNotFoundError(f"Book {book_id} not found.")
        return book

    def find_books(self, book_ids: List[str]) -> List[Book]:
        """Books for the given ids, in the order the ids were given; unknown ids are skipped."""
        if not book_ids:
            return []
        placeholders = ", ".join("?" for _ in book_ids)
        conn = get_db_connection()
        try:
            rows = conn.execute(
                f"SELECT {BOOK_COLUMNS} FROM libros WHERE id IN ({placeholders})", list(book_ids)
            ).fetchall()
        finally:
            conn.close()
        by_id = {row["id"]: Book.from_dict(dict(row)) for row in rows}
        return [by_id[book_id] for book_id in book_ids if book_id in by_id]

    def update_book(self, book_id: str, **fields: Any) -> Optional[Book]:
        """Update the given fields. Returns the updated book, or None when it does not exist."""
        existing = self.find_book(book_id)
        if not existing:
            return None

        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown book fields: {', '.join(sorted(unknown))}")

        update_fields = {k: v for k, v in fields.items() if v is not None}
        for key in ("title", "author"):
            if key in update_fields:
                update_fields[key] = TextValidator.require(update_fields[key], key.capitalize())
        if "units" in update_fields and int(update_fields["units"]) < 0:
            raise ValidationError("Units cannot be negative.")
        if not update_fields:
            raise ValidationError("Nothing to update.")

        set_clause = ", ".join(f"{name} = ?" for name in update_fields)
        params = list(update_fields.values()) + [book_id]

        conn = get_db_connection()
        try:
            conn.execute(f"UPDATE libros SET {set_clause} WHERE id = ?", params)
            conn.commit()
        finally:
            conn.close()
        return self.find_book(book_id)

    def search_books(self, query: str) -> List[Book]:
        """Case-insensitive match on title, author, genre or ISBN."""
        q = (query or "").strip()
        if not q:
            return self.list_books()
        pattern = f"%{q.lower()}%"
        conn = get_db_connection()
        try:
            rows = conn.execute(
                f"""
                SELECT {BOOK_COLUMNS} FROM libros
                WHERE LOWER(title) LIKE ? OR LOWER(author) LIKE ?
                   OR LOWER(COALESCE(genre, '')) LIKE ? OR LOWER(COALESCE(isbn, '')) LIKE ?
                ORDER BY title
                """,
                (pattern, pattern, pattern, pattern),
            ).fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def recommended_for(self, area: Optional[str]) -> List[Book]:
        """Books whose genre matches the reader's academic area.

        A book matches when its genre contains any of the area's genres,
        ignoring case. Without a known area the whole catalog is returned.
        """
        books = self.list_books()
        genres = AREA_GENRES.get(area or "")
        if not genres:
            return books
        wanted = [g.lower() for g in genres]
        recommended = []
        for book in books:
            genre = (book.genre or "").strip().lower()
            if genre and any(w in genre for w in wanted):
                recommended.append(book)
        return recommended

    def get_statistics(self) -> Dict[str, int]:
        conn = get_db_connection()
        try:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total_books,
                       COUNT(DISTINCT author) AS unique_authors,
                       COALESCE(SUM(CASE WHEN available THEN 1 ELSE 0 END), 0) AS available_books
                FROM libros
                """
            ).fetchone()
            return dict(row)
        finally:
            conn.close()

    # ------------------------- Google Books ------------------------- #
    def _require_google_books(self) -> GoogleBooksService:
        if self.google_books is None:
            raise ExternalServiceError("Google Books integration is disabled.")
        return self.google_books

    async def search_remote(self, query: str, max_results: int = 20) -> List[Book]:
        """Search Google Books; results are not added to the catalog."""
        return await self._require_google_books().search_books(query, max_results=max_results)

    async def import_by_isbn(self, isbn: str, units: int = 1) -> Book:
        """Fetch metadata from Google Books by ISBN and add the book to the catalog."""
        clean = ISBNValidator.normalize_isbn(isbn)
        if not clean:
            raise ValidationError("ISBN cannot be empty.")
        if not ISBNValidator.is_valid_isbn(clean):
            raise ValidationError("Invalid ISBN format.")

        book = await self._require_google_books().fetch_book_by_isbn(clean)
        if book is None:
            raise BookNotFoundError("Book not found.")
        book.units = units
        return self.add_book(book)

    async def enrich_book(self, book_id: str) -> Book:
        """Fill in cover, description, genre, publisher and date from Google Books."""
        book = self.get_book(book_id)
        data = await self._require_google_books().fetch_book_data(book.title, book.author, book.isbn)
        updates = {
            "image_url": book.image_url or data.image_url or None,
            "description": book.description or data.description,
            "genre": book.genre or data.genre,
            "publisher": book.publisher or data.publisher,
            "published_date": book.published_date or data.published_date,
        }
        if not any(updates.values()):
            return book
        return self.update_book(book_id, **updates)
