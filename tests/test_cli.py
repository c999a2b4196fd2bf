import json
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest
from typer.testing import CliRunner

from campus_library.book import Book
from campus_library.exceptions import BookNotFoundError
from campus_library.library import Library
from campus_library.main import app
from campus_library.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch, db_file):
    # --output writes the env var; monkeypatch puts it back afterwards
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")


def add_user(student_id="A0001", *extra):
    result = runner.invoke(app, ["add-user", student_id, "Ana", "--password", "secret123", *extra])
    assert result.exit_code == 0, result.stdout
    return result


def test_list_no_books():
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books in catalog." in result.stdout


def test_list_books(lib):
    lib.add_book(Book("Dune", "Frank Herbert", id="dune"))
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "dune - Dune by Frank Herbert" in result.stdout


def test_list_books_as_json(lib):
    lib.add_book(Book("Dune", "Frank Herbert", id="dune"))
    result = runner.invoke(app, ["--output", "json", "books"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)[0]["id"] == "dune"


def test_find_book(lib):
    lib.add_book(Book("Dune", "Frank Herbert", id="dune", units=3))
    result = runner.invoke(app, ["find", "dune"])
    assert result.exit_code == 0
    assert "Book Found" in result.stdout
    assert "Title: Dune" in result.stdout
    assert "Units: 3" in result.stdout


def test_find_book_not_found():
    result = runner.invoke(app, ["find", "nope"])
    assert result.exit_code == 0
    assert "Book nope not found." in result.stdout


def test_search(lib):
    lib.add_book(Book("Dune", "Frank Herbert", id="dune"))
    lib.add_book(Book("Emma", "Jane Austen", id="emma"))
    result = runner.invoke(app, ["search", "austen"])
    assert "emma - Emma by Jane Austen" in result.stdout
    assert "Dune" not in result.stdout


def test_import_success(monkeypatch):
    mock_book = Book(title="Test Book", author="Test Author", id="t1", isbn="9780306406157")
    import_mock = AsyncMock(return_value=mock_book)
    monkeypatch.setattr(Library, "import_by_isbn", import_mock)

    result = runner.invoke(app, ["import", "9780306406157", "--units", "2"])
    assert result.exit_code == 0
    assert "Successfully added: Test Book by Test Author" in result.stdout
    import_mock.assert_awaited_once_with("9780306406157", units=2)


def test_import_not_found(monkeypatch):
    monkeypatch.setattr(Library, "import_by_isbn", AsyncMock(side_effect=BookNotFoundError("Book not found.")))

    result = runner.invoke(app, ["import", "0306406152"])
    assert result.exit_code == 1
    assert "Error: Book not found." in result.stdout


def test_add_user_and_login():
    result = add_user("a0001", "--area", "Gastronomía")
    assert "User created: Ana (A0001)" in result.stdout

    result = runner.invoke(app, ["login", "A0001", "--password", "secret123"])
    assert result.exit_code == 0
    assert "Welcome, Ana" in result.stdout


def test_login_wrong_password():
    add_user()
    result = runner.invoke(app, ["login", "A0001", "--password", "wrong-pass"])
    assert result.exit_code == 1
    assert "Error: Invalid credentials" in result.stdout


def test_unknown_student():
    result = runner.invoke(app, ["loans", "Z9999"])
    assert result.exit_code == 1
    assert "No user with student ID Z9999." in result.stdout


def test_request_list_and_cancel_loan(lib):
    add_user()
    lib.add_book(Book("Dune", "Frank Herbert", id="dune"))
    pickup = (date.today() + timedelta(days=1)).isoformat()

    result = runner.invoke(app, ["request", "A0001", "dune", "--pickup", pickup])
    assert result.exit_code == 0, result.stdout
    assert "Loan requested:" in result.stdout
    loan_id = result.stdout.split("Loan requested:")[1].split()[0]

    result = runner.invoke(app, ["loans", "A0001"])
    assert "Active:" in result.stdout
    assert f"{loan_id} - Dune [active]" in result.stdout

    result = runner.invoke(app, ["cancel", loan_id])
    assert result.exit_code == 0
    assert f"Loan {loan_id} cancelled." in result.stdout

    result = runner.invoke(app, ["cancel", loan_id])
    assert result.exit_code == 1
    assert "Cannot change a loan from 'cancelled' to 'cancelled'." in result.stdout


def test_request_unavailable_book(lib):
    add_user()
    lib.add_book(Book("Dune", "Frank Herbert", id="dune", available=False))
    result = runner.invoke(app, ["request", "A0001", "dune"])
    assert result.exit_code == 1
    assert "not available" in result.stdout


def test_deliver_and_refresh(lib):
    add_user()
    lib.add_book(Book("Dune", "Frank Herbert", id="dune"))
    result = runner.invoke(app, ["request", "A0001", "dune"])
    loan_id = result.stdout.split("Loan requested:")[1].split()[0]

    result = runner.invoke(app, ["deliver", loan_id])
    assert result.exit_code == 0
    assert f"Loan {loan_id} delivered: Dune" in result.stdout

    result = runner.invoke(app, ["refresh"])
    assert "0 loan(s) marked as expired." in result.stdout


def test_favorites_toggle(lib):
    add_user()
    lib.add_book(Book("Dune", "Frank Herbert", id="dune"))

    result = runner.invoke(app, ["fav", "A0001", "dune"])
    assert "Added to favorites." in result.stdout
    result = runner.invoke(app, ["favorites", "A0001"])
    assert "dune - Dune by Frank Herbert" in result.stdout

    result = runner.invoke(app, ["fav", "A0001", "dune"])
    assert "Removed from favorites." in result.stdout
    result = runner.invoke(app, ["favorites", "A0001"])
    assert "No favorites yet." in result.stdout


def test_recommend(lib):
    add_user("A0001", "--area", "Gastronomía")
    lib.add_book(Book("Recetas", "Chef", id="r1", genre="Cocina"))
    lib.add_book(Book("Redes", "Tanenbaum", id="n1", genre="Redes"))
    result = runner.invoke(app, ["recommend", "A0001"])
    assert "r1 - Recetas by Chef" in result.stdout
    assert "Redes" not in result.stdout
