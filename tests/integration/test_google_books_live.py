"""Live checks against the Google Books API.

Deselected by default; run with ``pytest -m integration``.
"""
import asyncio

import pytest
from dotenv import load_dotenv

from campus_library.services.google_books_service import GoogleBooksService
from campus_library.services.http_client import OptimizedHTTPClient

# Mark the entire module as integration to allow skipping by default
pytestmark = pytest.mark.integration

load_dotenv()


async def _with_service(db_file, call):
    async with OptimizedHTTPClient() as client:
        return await call(GoogleBooksService(http_client=client, language=""))


def test_search_books_live(db_file):
    books = asyncio.run(_with_service(db_file, lambda s: s.search_books("Python programming", max_results=5)))
    assert 0 < len(books) <= 5
    assert all(book.title for book in books)


def test_fetch_book_by_isbn_live(db_file):
    book = asyncio.run(_with_service(db_file, lambda s: s.fetch_book_by_isbn("9780596009205")))
    assert book is not None
    assert "Head First" in book.title


def test_fetch_book_data_live(db_file):
    data = asyncio.run(_with_service(db_file, lambda s: s.fetch_book_data("Clean Code", "Robert C. Martin")))
    assert data.image_url.startswith("https://")
