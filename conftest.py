import os
from datetime import datetime, timezone

import pytest

from campus_library import database
from campus_library.auth import AuthService
from campus_library.book import Book
from campus_library.favorites import FavoritesService
from campus_library.library import Library
from campus_library.loans import LoanService

# Fixed clock for loan tests: 10:00 UTC on a Monday
NOW = datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_file(tmp_path, request):
    # A separate database file for each test
    path = str(tmp_path / f"test_{request.node.name}.db")
    previous = database.DATABASE_FILE
    database.initialize_database(path)
    yield path
    database.use_database(previous)
    if os.path.exists(path):
        os.remove(path)


@pytest.fixture
def lib(db_file):
    # Google Books stays off unless a test passes its own service
    library = Library(db_file=db_file)
    library.google_books = None
    return library


@pytest.fixture
def auth(db_file):
    return AuthService(db_file=db_file, secret_key="test-secret")


@pytest.fixture
def make_user(auth):
    counter = {"n": 0}

    def _make(student_id=None, password="secret123", first_name="Ana", **fields):
        counter["n"] += 1
        student_id = student_id or f"A{1000 + counter['n']}"
        return auth.create_user(student_id, password, first_name, **fields)

    return _make


@pytest.fixture
def user(make_user):
    return make_user("A0001", last_name="López", area="Tecnologías de la Información")


@pytest.fixture
def make_book(lib):
    counter = {"n": 0}

    def _make(title=None, author="Some Author", **fields):
        counter["n"] += 1
        return lib.add_book(Book(title or f"Book {counter['n']}", author, **fields))

    return _make


@pytest.fixture
def loans(lib, db_file):
    return LoanService(library=lib, db_file=db_file)


@pytest.fixture
def favorites(lib, db_file):
    return FavoritesService(library=lib, db_file=db_file)
