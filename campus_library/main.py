import asyncio
import logging
import subprocess
import sys
import webbrowser
from datetime import datetime
from typing import Optional

import typer

from campus_library import database
from campus_library.auth import AuthService
from campus_library.config import settings
from campus_library.exceptions import LibraryError
from campus_library.favorites import FavoritesService
from campus_library.library import Library
from campus_library.loans import LoanService
from campus_library.services.google_books_service import GoogleBooksAPIError
from campus_library.user import User
from campus_library.ui_helpers import (
    print_book_details,
    print_books,
    print_loan_overview,
    print_loans,
    set_output_mode,
)

APP_NAME = "Campus Library CLI"

logger = logging.getLogger(__name__)


class ServiceManager:
    """Builds the services once per database file."""
    _library: Optional[Library] = None
    _auth: Optional[AuthService] = None
    _favorites: Optional[FavoritesService] = None
    _loans: Optional[LoanService] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def _ensure(cls) -> None:
        current_db = database.DATABASE_FILE
        if cls._library is None or current_db != cls._db_file_snapshot:
            cls._library = Library()
            cls._auth = AuthService()
            cls._favorites = FavoritesService(library=cls._library)
            cls._loans = LoanService(library=cls._library)
            cls._db_file_snapshot = current_db

    @classmethod
    def library(cls) -> Library:
        cls._ensure()
        return cls._library

    @classmethod
    def auth(cls) -> AuthService:
        cls._ensure()
        return cls._auth

    @classmethod
    def favorites(cls) -> FavoritesService:
        cls._ensure()
        return cls._favorites

    @classmethod
    def loans(cls) -> LoanService:
        cls._ensure()
        return cls._loans


def _user_or_exit(student_id: str) -> User:
    user = ServiceManager.auth().find_by_student_id(student_id)
    if user is None:
        print(f"No user with student ID {student_id}.")
        raise typer.Exit(code=1)
    return user


def _fail(error: Exception) -> None:
    print(f"Error: {error}")
    raise typer.Exit(code=1)


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)


# --- Catalog ---
@app.command("books")
def cli_books():
    """List every book in the catalog."""
    print_books(ServiceManager.library().list_books())


@app.command("find")
def cli_find(book_id: str):
    """Show one book's details."""
    book = ServiceManager.library().find_book(book_id)
    if book:
        print_book_details(book)
    else:
        print(f"Book {book_id} not found.")


@app.command("search")
def cli_search(query: str):
    """Search the catalog by title, author, genre or ISBN."""
    print_books(ServiceManager.library().search_books(query), empty_message=f"No books match '{query}'.")


@app.command("search-remote")
def cli_search_remote(query: str, max_results: int = typer.Option(10, "--max", "-n", help="Maximum results (1-40)")):
    """Search Google Books without adding anything to the catalog."""
    try:
        books = asyncio.run(ServiceManager.library().search_remote(query, max_results=max_results))
    except (LibraryError, GoogleBooksAPIError) as e:
        _fail(e)
    print_books(books, empty_message=f"Google Books returned nothing for '{query}'.")


@app.command("import")
def cli_import(isbn: str, units: int = typer.Option(1, "--units", "-u", help="Number of copies")):
    """Add a book to the catalog using Google Books metadata."""
    try:
        book = asyncio.run(ServiceManager.library().import_by_isbn(isbn, units=units))
    except (LibraryError, GoogleBooksAPIError) as e:
        _fail(e)
    print(f"Successfully added: {book.title} by {book.author} (id: {book.id})")


@app.command("recommend")
def cli_recommend(student_id: str):
    """Books recommended for a student's academic area."""
    user = _user_or_exit(student_id)
    print_books(ServiceManager.library().recommended_for(user.area), empty_message="No recommendations.")


# --- Users ---
@app.command("add-user")
def cli_add_user(
    student_id: str,
    first_name: str,
    last_name: Optional[str] = typer.Option(None, "--last-name"),
    email: Optional[str] = typer.Option(None, "--email"),
    area: Optional[str] = typer.Option(None, "--area"),
    career: Optional[str] = typer.Option(None, "--career"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Register a user."""
    try:
        user = ServiceManager.auth().create_user(
            student_id, password, first_name, last_name=last_name, email=email, area=area, career=career
        )
    except LibraryError as e:
        _fail(e)
    print(f"User created: {user.full_name} ({user.student_id})")


@app.command("login")
def cli_login(
    student_id: str,
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
):
    """Check credentials and print a bearer token for the API."""
    auth = ServiceManager.auth()
    try:
        user = auth.login(student_id, password)
    except LibraryError as e:
        _fail(e)
    print(f"Welcome, {user.full_name}")
    print(auth.issue_token(user))


# --- Loans ---
@app.command("loans")
def cli_loans(student_id: str):
    """A student's loans: active, expired and history."""
    user = _user_or_exit(student_id)
    print_loan_overview(ServiceManager.loans().get_loan_overview(user.id))


@app.command("request")
def cli_request(
    student_id: str,
    book_id: str,
    pickup: Optional[datetime] = typer.Option(None, "--pickup", help="Pickup date (default: now)"),
):
    """Request a loan; the book is due five days after pickup."""
    user = _user_or_exit(student_id)
    loans = ServiceManager.loans()
    try:
        loan = loans.request_loan(user.id, book_id, pickup or datetime.now().astimezone())
    except LibraryError as e:
        _fail(e)
    print(f"Loan requested: {loan.id}")
    print(f"Pick up on {loan.pickup_date.date().isoformat()}, return by {loan.due_date.date().isoformat()}")


@app.command("cancel")
def cli_cancel(loan_id: str):
    """Cancel an active loan."""
    try:
        ServiceManager.loans().cancel_loan(loan_id)
    except LibraryError as e:
        _fail(e)
    print(f"Loan {loan_id} cancelled.")


@app.command("deliver")
def cli_deliver(loan_id: str):
    """Record a returned book."""
    try:
        loan = ServiceManager.loans().deliver_loan(loan_id)
    except LibraryError as e:
        _fail(e)
    print(f"Loan {loan_id} delivered: {loan.book_data.title}")


@app.command("refresh")
def cli_refresh():
    """Expire every active loan past its due date."""
    count = ServiceManager.loans().refresh_statuses()
    print(f"{count} loan(s) marked as expired.")


@app.command("overdue")
def cli_overdue(student_id: str):
    """Only the expired loans of a student."""
    user = _user_or_exit(student_id)
    overview = ServiceManager.loans().get_loan_overview(user.id)
    print_loans(overview["expired"], empty_message="No expired loans.")


# --- Favorites ---
@app.command("favorites")
def cli_favorites(student_id: str):
    """A student's favorite books."""
    user = _user_or_exit(student_id)
    print_books(ServiceManager.favorites().get_favorite_books(user.id), empty_message="No favorites yet.")


@app.command("fav")
def cli_fav(student_id: str, book_id: str):
    """Toggle a book in a student's favorites."""
    user = _user_or_exit(student_id)
    try:
        now_favorite = ServiceManager.favorites().toggle_favorite(user.id, book_id)
    except LibraryError as e:
        _fail(e)
    print("Added to favorites." if now_favorite else "Removed from favorites.")


# --- Server ---
@app.command("serve")
def cli_serve(open_browser: bool = typer.Option(True, "--browser/--no-browser", help="Open the API docs")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    if open_browser:
        try:
            webbrowser.open(url)
        except webbrowser.Error:
            logger.warning("Could not open a web browser")
    subprocess.run([
        sys.executable,
        "-m", "uvicorn",
        "campus_library.api:app",
        "--host", host,
        "--port", str(port),
    ])


if __name__ == "__main__":
    app()
