import asyncio

import pytest

from campus_library.book import Book
from campus_library.exceptions import BookNotFoundError, ValidationError
from campus_library.library import ExternalServiceError, Library
from campus_library.services.google_books_service import BookImageData


class FakeGoogleBooks:
    def __init__(self, book=None, data=None, results=None):
        self.book = book
        self.data = data or BookImageData()
        self.results = results or []
        self.calls = []

    async def fetch_book_by_isbn(self, isbn):
        self.calls.append(("isbn", isbn))
        return self.book

    async def fetch_book_data(self, title, author=None, isbn=None):
        self.calls.append(("data", title, author, isbn))
        return self.data

    async def search_books(self, query, max_results=20):
        self.calls.append(("search", query, max_results))
        return self.results


def test_add_list_and_find(lib):
    assert lib.list_books() == []

    book = lib.add_book(Book("Ulysses", "James Joyce", id="ulysses", isbn="978-0-306-40615-7"))

    assert book.created_at is not None
    found = lib.find_book("ulysses")
    assert found.title == "Ulysses"
    assert found.isbn == "9780306406157"
    assert found.units == 1
    assert found.available is True
    assert len(lib.list_books()) == 1


def test_generated_ids_are_unique(lib):
    first = lib.add_book(Book("Same", "Author"))
    second = lib.add_book(Book("Same", "Author"))
    assert first.id != second.id


def test_add_duplicate_id(lib):
    lib.add_book(Book("Test Book", "Test Author", id="b1"))
    with pytest.raises(ValidationError, match="Book with id b1 already exists."):
        lib.add_book(Book("Other", "Author", id="b1"))
    assert len(lib.list_books()) == 1


@pytest.mark.parametrize("title,author", [("", "Author"), ("Title", "   ")])
def test_title_and_author_required(lib, title, author):
    with pytest.raises(ValidationError):
        lib.add_book(Book(title, author))


def test_negative_units_rejected(lib):
    with pytest.raises(ValidationError):
        lib.add_book(Book("Title", "Author", units=-1))


def test_persistence(lib, db_file):
    lib.add_book(Book("Sapiens", "Yuval Noah Harari", id="sapiens"))

    lib2 = Library(db_file=db_file)
    assert lib2.find_book("sapiens").title == "Sapiens"


def test_list_is_sorted_by_title(lib, make_book):
    make_book("Zorba")
    make_book("Anna Karenina")
    assert [b.title for b in lib.list_books()] == ["Anna Karenina", "Zorba"]


def test_remove(lib):
    lib.add_book(Book("Test", "Author", id="123"))
    assert lib.remove_book("123") is True
    assert lib.remove_book("123") is False


def test_get_book_raises_when_missing(lib):
    assert lib.find_book("missing") is None
    with pytest.raises(BookNotFoundError):
        lib.get_book("missing")


def test_find_books_keeps_requested_order(lib, make_book):
    a, b, c = make_book(), make_book(), make_book()
    assert [x.id for x in lib.find_books([c.id, "missing", a.id])] == [c.id, a.id]
    assert lib.find_books([]) == []


def test_update_book(lib, db_file):
    lib.add_book(Book("Old Title", "Old Author", id="b1"))

    updated = lib.update_book("b1", title="New Title", units=3, available=False)
    assert updated.title == "New Title"
    assert updated.author == "Old Author"
    assert updated.units == 3
    assert updated.available is False

    assert Library(db_file=db_file).find_book("b1").title == "New Title"


def test_update_book_not_found(lib):
    assert lib.update_book("nonexistent", title="New Title") is None


def test_update_book_rejects_unknown_fields(lib, make_book):
    book = make_book()
    with pytest.raises(ValidationError):
        lib.update_book(book.id, id="other")


def test_search_books(lib, make_book):
    make_book("Python Crash Course", "Eric Matthes", genre="Programación")
    make_book("Cocina mexicana", "Diana Kennedy", genre="Cocina", isbn="9780306406157")

    assert [b.title for b in lib.search_books("python")] == ["Python Crash Course"]
    assert [b.title for b in lib.search_books("KENNEDY")] == ["Cocina mexicana"]
    assert [b.title for b in lib.search_books("cocina")] == ["Cocina mexicana"]
    assert [b.title for b in lib.search_books("0306406")] == ["Cocina mexicana"]
    assert lib.search_books("nothing like this") == []
    assert len(lib.search_books("  ")) == 2


def test_recommended_for_area(lib, make_book):
    make_book("Redes de computadoras", genre="Redes")
    make_book("Aprende Python", genre="Programación avanzada")
    make_book("El arte de la cocina", genre="Cocina")
    make_book("Sin género")

    recommended = lib.recommended_for("Tecnologías de la Información")
    assert sorted(b.title for b in recommended) == ["Aprende Python", "Redes de computadoras"]

    assert [b.title for b in lib.recommended_for("Gastronomía")] == ["El arte de la cocina"]


def test_recommended_without_known_area_returns_catalog(lib, make_book):
    make_book("One", genre="Cocina")
    make_book("Two")
    assert len(lib.recommended_for(None)) == 2
    assert len(lib.recommended_for("Astrología")) == 2


def test_statistics(lib, make_book):
    make_book(author="A")
    make_book(author="A")
    make_book(author="B", available=False)
    assert lib.get_statistics() == {"total_books": 3, "unique_authors": 2, "available_books": 2}


def test_import_by_isbn(lib):
    lib.google_books = FakeGoogleBooks(book=Book("Effective Python", "Brett Slatkin", id="vol1", isbn="9780306406157"))

    book = asyncio.run(lib.import_by_isbn("978-0-306-40615-7", units=2))

    assert book.title == "Effective Python"
    assert book.units == 2
    assert lib.find_book("vol1").units == 2
    assert lib.google_books.calls == [("isbn", "9780306406157")]


def test_import_by_isbn_not_found(lib):
    lib.google_books = FakeGoogleBooks(book=None)
    with pytest.raises(BookNotFoundError):
        asyncio.run(lib.import_by_isbn("0306406152"))


@pytest.mark.parametrize("isbn", ["", "123", "9780306406158"])
def test_import_invalid_isbn_is_not_sent(lib, isbn):
    lib.google_books = FakeGoogleBooks()
    with pytest.raises(ValidationError):
        asyncio.run(lib.import_by_isbn(isbn))
    assert lib.google_books.calls == []


def test_google_books_disabled(lib):
    with pytest.raises(ExternalServiceError):
        asyncio.run(lib.search_remote("python"))


def test_search_remote_does_not_touch_catalog(lib):
    lib.google_books = FakeGoogleBooks(results=[Book("Remote", "Someone", id="r1")])
    results = asyncio.run(lib.search_remote("remote", max_results=5))
    assert [b.id for b in results] == ["r1"]
    assert lib.list_books() == []


def test_enrich_book_fills_missing_fields_only(lib):
    lib.add_book(Book("Dune", "Frank Herbert", id="dune", genre="Ciencia ficción"))
    lib.google_books = FakeGoogleBooks(data=BookImageData(
        image_url="https://books.google.com/cover?id=1&zoom=2",
        description="Desert planet.",
        genre="Fiction",
        publisher="Chilton",
        published_date="1965",
    ))

    book = asyncio.run(lib.enrich_book("dune"))

    assert book.image_url == "https://books.google.com/cover?id=1&zoom=2"
    assert book.description == "Desert planet."
    assert book.genre == "Ciencia ficción"
    assert book.publisher == "Chilton"


def test_enrich_book_keeps_existing_cover(lib):
    lib.add_book(Book("Dune", "Frank Herbert", id="dune", image_url="https://mine/cover.jpg"))
    lib.google_books = FakeGoogleBooks(data=BookImageData(image_url="https://google/other.jpg", publisher="Chilton"))

    book = asyncio.run(lib.enrich_book("dune"))

    assert book.image_url == "https://mine/cover.jpg"
    assert book.publisher == "Chilton"


@pytest.mark.parametrize("blank", ["", "   "])
def test_blank_id_gets_generated(lib, blank):
    book = lib.add_book(Book("Dune", "Frank Herbert", id=blank))
    assert book.id.strip()
    assert lib.find_book(book.id).title == "Dune"
