import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from campus_library.auth import AuthService
from campus_library.book import Book
from campus_library.config import settings
from campus_library.database import get_db_connection
from campus_library.exceptions import (
    AuthenticationError,
    BookNotFoundError,
    BookUnavailableError,
    DuplicateLoanError,
    DuplicateUserError,
    ExternalServiceError,
    InvalidLoanTransition,
    LibraryError,
    LoanLimitExceeded,
    LoanNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from campus_library.favorites import FavoritesService
from campus_library.library import Library
from campus_library.loan import Loan
from campus_library.loans import LoanService
from campus_library.services.google_books_service import GoogleBooksAPIError, RateLimitExceeded
from campus_library.services.http_client import cleanup_http_client, get_http_client
from campus_library.user import User

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

library = Library()
auth_service = AuthService()
favorites_service = FavoritesService(library=library)
loan_service = LoanService(library=library)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_http_client()
    try:
        yield
    finally:
        await cleanup_http_client()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    # Loan and favorite state changes on every request
    if request.url.path.startswith(("/loans", "/favorites", "/users")):
        response.headers["Cache-Control"] = "no-store"
    return response


# --- Error mapping ---
ERROR_STATUS = (
    (AuthenticationError, 401),
    (ValidationError, 400),
    ((BookNotFoundError, UserNotFoundError, LoanNotFoundError), 404),
    ((DuplicateUserError, BookUnavailableError, DuplicateLoanError, LoanLimitExceeded, InvalidLoanTransition), 409),
    (ExternalServiceError, 503),
)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    status_code = 500
    for error_types, code in ERROR_STATUS:
        if isinstance(exc, error_types):
            status_code = code
            break
    if status_code == 500:
        logger.error(f"Unmapped library error on {request.url.path}: {exc!r}")
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content={"detail": str(exc)}, headers=headers)


@app.exception_handler(GoogleBooksAPIError)
async def google_books_error_handler(request: Request, exc: GoogleBooksAPIError):
    status_code = 429 if isinstance(exc, RateLimitExceeded) else 502
    return JSONResponse(status_code=status_code, content={"detail": f"Google Books: {exc}"})


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Dependency guarding librarian/admin endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> User:
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth_service.user_from_token(credentials.credentials)


# --- Models ---
class BookModel(BaseModel):
    id: str
    title: str
    author: str
    available: bool = True
    image: str | None = None
    image_url: str | None = None
    description: str | None = None
    genre: str | None = None
    isbn: str | None = None
    publisher: str | None = None
    published_date: str | None = None
    units: int = 1
    created_at: str | None = None


class BookCreateModel(BaseModel):
    id: str | None = Field(default=None, description="Generated when omitted")
    title: str
    author: str
    available: bool = True
    image: str | None = None
    image_url: str | None = None
    description: str | None = None
    genre: str | None = None
    isbn: str | None = None
    publisher: str | None = None
    published_date: str | None = None
    units: int = Field(default=1, ge=0)


class BookUpdateModel(BaseModel):
    title: str | None = None
    author: str | None = None
    available: bool | None = None
    image: str | None = None
    image_url: str | None = None
    description: str | None = None
    genre: str | None = None
    isbn: str | None = None
    publisher: str | None = None
    published_date: str | None = None
    units: int | None = Field(default=None, ge=0)


class BookImportModel(BaseModel):
    isbn: str
    units: int = Field(default=1, ge=0)


class UserModel(BaseModel):
    id: str
    student_id: str
    first_name: str
    last_name: str | None = None
    birth_date: str | None = None
    age: int | None = None
    sex: str | None = None
    phone: str | None = None
    email: str | None = None
    area: str | None = None
    career: str | None = None
    favorite_ids: List[str] = []


class UserCreateModel(BaseModel):
    student_id: str
    password: str
    first_name: str
    last_name: str | None = None
    email: str | None = None
    birth_date: str | None = None
    sex: str | None = None
    phone: str | None = None
    area: str | None = None
    career: str | None = None


class LoginModel(BaseModel):
    student_id: str
    password: str


class TokenModel(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserModel


class ChangePasswordModel(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


class LoanModel(BaseModel):
    id: str
    user_id: str
    book_id: str
    book_data: BookModel
    requested_at: datetime
    pickup_date: datetime
    due_date: datetime
    returned_at: datetime | None = None
    status: str
    active: bool
    days_remaining: int


class LoanOverviewModel(BaseModel):
    active: List[LoanModel]
    expired: List[LoanModel]
    history: List[LoanModel]


class LoanRequestModel(BaseModel):
    book_id: str
    pickup_date: datetime


class EligibilityModel(BaseModel):
    allowed: bool
    active_loans: int
    max_active_loans: int
    message: str | None = None


class FavoriteStatusModel(BaseModel):
    book_id: str
    favorite: bool


class RefreshResultModel(BaseModel):
    expired: int


def _user_out(user: User) -> dict:
    data = user.to_dict()
    data["age"] = user.age()
    return data


def _loans_out(loans: List[Loan]) -> List[dict]:
    now = datetime.now(timezone.utc)
    return [loan.to_dict(now) for loan in loans]


# --- Health ---
@app.get("/health")
def health():
    db_ok = True
    try:
        conn = get_db_connection()
        conn.execute("SELECT 1")
        conn.close()
    except Exception:
        logger.exception("Health check could not reach the database")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "services": {"google_books": library.google_books is not None},
        "catalog": library.get_statistics() if db_ok else None,
    }


# --- Auth & users ---
@app.post("/auth/login", response_model=TokenModel)
def login(payload: LoginModel):
    user = auth_service.login(payload.student_id, payload.password)
    return {"access_token": auth_service.issue_token(user), "token_type": "bearer", "user": _user_out(user)}


@app.post("/auth/change-password", status_code=204)
def change_password(payload: ChangePasswordModel, user: User = Depends(get_current_user)):
    auth_service.change_password(
        user.id, payload.current_password, payload.new_password, payload.confirm_password
    )


@app.get("/users/me", response_model=UserModel)
def me(user: User = Depends(get_current_user)):
    return _user_out(user)


@app.post("/users", response_model=UserModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_user(payload: UserCreateModel):
    data = payload.model_dump()
    user = auth_service.create_user(data.pop("student_id"), data.pop("password"), data.pop("first_name"), **data)
    return _user_out(user)


# --- Catalog ---
@app.get("/books", response_model=List[BookModel])
def list_books(q: Optional[str] = Query(None, description="Filter by title, author, genre or ISBN")):
    books = library.search_books(q) if q else library.list_books()
    return [b.to_dict() for b in books]


@app.get("/books/recommended", response_model=List[BookModel])
def recommended_books(user: User = Depends(get_current_user)):
    return [b.to_dict() for b in library.recommended_for(user.area)]


@app.get("/books/search/remote", response_model=List[BookModel])
async def search_remote(q: str = Query(..., min_length=1), max_results: int = Query(20, ge=1, le=40)):
    books = await library.search_remote(q, max_results=max_results)
    return [b.to_dict() for b in books]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str):
    return library.get_book(book_id).to_dict()


@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel):
    book = library.add_book(Book(**payload.model_dump()))
    return book.to_dict()


@app.post("/books/import", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
async def import_book(payload: BookImportModel):
    book = await library.import_by_isbn(payload.isbn, units=payload.units)
    return book.to_dict()


@app.post("/books/{book_id}/enrich", response_model=BookModel, dependencies=[Depends(get_api_key)])
async def enrich_book(book_id: str):
    book = await library.enrich_book(book_id)
    return book.to_dict()


@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: str, payload: BookUpdateModel):
    fields = payload.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    book = library.update_book(book_id, **fields)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found.")
    return book.to_dict()


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: str):
    if not library.remove_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found.")
    return {"message": f"Book {book_id} removed."}


# --- Favorites ---
@app.get("/favorites", response_model=List[BookModel])
def list_favorites(user: User = Depends(get_current_user)):
    return [b.to_dict() for b in favorites_service.get_favorite_books(user.id)]


@app.get("/favorites/ids", response_model=List[str])
def list_favorite_ids(user: User = Depends(get_current_user)):
    return favorites_service.get_favorite_ids(user.id)


@app.get("/favorites/{book_id}", response_model=FavoriteStatusModel)
def favorite_status(book_id: str, user: User = Depends(get_current_user)):
    return {"book_id": book_id, "favorite": favorites_service.is_favorite(user.id, book_id)}


@app.post("/favorites/{book_id}", response_model=FavoriteStatusModel)
def add_favorite(book_id: str, user: User = Depends(get_current_user)):
    favorites_service.add_favorite(user.id, book_id)
    return {"book_id": book_id, "favorite": True}


@app.delete("/favorites/{book_id}", response_model=FavoriteStatusModel)
def remove_favorite(book_id: str, user: User = Depends(get_current_user)):
    favorites_service.remove_favorite(user.id, book_id)
    return {"book_id": book_id, "favorite": False}


@app.post("/favorites/{book_id}/toggle", response_model=FavoriteStatusModel)
def toggle_favorite(book_id: str, user: User = Depends(get_current_user)):
    return {"book_id": book_id, "favorite": favorites_service.toggle_favorite(user.id, book_id)}


# --- Loans ---
@app.get("/loans", response_model=LoanOverviewModel)
def loan_overview(user: User = Depends(get_current_user)):
    overview = loan_service.get_loan_overview(user.id)
    return {section: _loans_out(loans) for section, loans in overview.items()}


@app.get("/loans/active", response_model=List[LoanModel])
def active_loans(user: User = Depends(get_current_user)):
    loan_service.refresh_statuses(user_id=user.id)
    return _loans_out(loan_service.get_active_loans(user.id))


@app.get("/loans/history", response_model=List[LoanModel])
def loan_history(user: User = Depends(get_current_user)):
    loan_service.refresh_statuses(user_id=user.id)
    return _loans_out(loan_service.get_loan_history(user.id))


@app.get("/loans/eligibility", response_model=EligibilityModel)
def loan_eligibility(user: User = Depends(get_current_user)):
    allowed, message = loan_service.can_request_loan(user.id)
    return {
        "allowed": allowed,
        "active_loans": loan_service.count_open_loans(user.id),
        "max_active_loans": loan_service.max_active_loans,
        "message": message,
    }


@app.post("/loans", response_model=LoanModel, status_code=201)
def request_loan(payload: LoanRequestModel, user: User = Depends(get_current_user)):
    loan = loan_service.request_loan(user.id, payload.book_id, payload.pickup_date)
    return loan.to_dict()


@app.get("/loans/{loan_id}", response_model=LoanModel)
def get_loan(loan_id: str, user: User = Depends(get_current_user)):
    loan_service.refresh_statuses(user_id=user.id)
    return loan_service.get_loan(loan_id, user_id=user.id).to_dict()


@app.post("/loans/{loan_id}/cancel", response_model=LoanModel)
def cancel_loan(loan_id: str, user: User = Depends(get_current_user)):
    return loan_service.cancel_loan(loan_id, user_id=user.id).to_dict()


@app.post("/loans/{loan_id}/deliver", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def deliver_loan(loan_id: str):
    return loan_service.deliver_loan(loan_id).to_dict()


@app.post("/loans/refresh", response_model=RefreshResultModel, dependencies=[Depends(get_api_key)])
def refresh_loans():
    return {"expired": loan_service.refresh_statuses()}
