import logging
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

import httpx

from campus_library.book import Book
from campus_library.config import settings
from campus_library.database import get_db_connection
from campus_library.services.http_client import OptimizedHTTPClient, get_http_client
from campus_library.validators import ISBNValidator, TextValidator

logger = logging.getLogger(__name__)

# Largest first; Google does not always send every size
IMAGE_SIZE_PREFERENCE = ("large", "medium", "thumbnail", "small", "smallThumbnail")
MAX_RESULTS_LIMIT = 40  # Google Books API hard cap


@dataclass
class BookImageData:
    """Metadata used to enrich a catalog entry"""
    image_url: str = ""
    description: Optional[str] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None


class GoogleBooksAPIError(Exception):
    """Custom exception for Google Books API errors"""
    pass


class RateLimitExceeded(GoogleBooksAPIError):
    """Exception raised when rate limit is exceeded"""
    pass


def best_image_url(image_links: Optional[Dict[str, str]]) -> str:
    """Pick the largest cover Google offers and request it over HTTPS at zoom 2"""
    if not image_links:
        return ""
    url = ""
    for key in IMAGE_SIZE_PREFERENCE:
        if image_links.get(key):
            url = image_links[key]
            break
    return (
        url.replace("http:", "https:")
        .replace("&edge=curl", "")
        .replace("zoom=1", "zoom=2")
    )


class GoogleBooksService:
    """Thin client over the Google Books volumes endpoint"""

    def __init__(self, api_key: Optional[str] = None, http_client: Optional[OptimizedHTTPClient] = None,
                 daily_limit: Optional[int] = None, language: Optional[str] = None):
        self.api_key = api_key or settings.google_books_api_key
        self.base_url = "https://www.googleapis.com/books/v1"
        self.daily_limit = daily_limit if daily_limit is not None else settings.google_books_daily_limit
        self.language = language if language is not None else settings.google_books_language
        self.timeout = settings.google_books_timeout
        self._http_client = http_client

    # ------------------------- Usage tracking ------------------------- #
    def _get_daily_usage(self) -> int:
        """Successful calls made since midnight UTC"""
        conn = get_db_connection()
        try:
            row = conn.execute(
                """
                SELECT COUNT(*) FROM api_usage_logs
                WHERE api_name = 'google_books' AND success = 1 AND created_at >= date('now')
                """
            ).fetchone()
            return row[0] if row else 0
        finally:
            conn.close()

    def _check_rate_limit(self) -> bool:
        current_usage = self._get_daily_usage()
        if current_usage >= self.daily_limit:
            logger.warning(f"Daily rate limit exceeded: {current_usage}/{self.daily_limit}")
            return False
        return True

    def _log_api_usage(self, endpoint: str, success: bool, response_time_ms: int = 0) -> None:
        conn = get_db_connection()
        try:
            conn.execute(
                """
                INSERT INTO api_usage_logs (api_name, endpoint, success, response_time_ms)
                VALUES (?, ?, ?, ?)
                """,
                ("google_books", endpoint, success, response_time_ms),
            )
            conn.commit()
            logger.info(f"Google Books API usage logged: endpoint={endpoint}, success={success}")
        finally:
            conn.close()

    def get_usage_stats(self) -> Dict[str, int]:
        used = self._get_daily_usage()
        return {
            "daily_calls_used": used,
            "daily_limit": self.daily_limit,
            "calls_remaining": max(self.daily_limit - used, 0),
        }

    # ------------------------- HTTP ------------------------- #
    async def _client(self) -> OptimizedHTTPClient:
        # The shared client is replaced on every app start; only an injected one is kept
        if self._http_client is not None:
            return self._http_client
        return await get_http_client()

    async def _make_api_request(self, endpoint: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Call the API; None on any failure except an exhausted quota"""
        if not self._check_rate_limit():
            raise RateLimitExceeded("Daily rate limit exceeded")

        url = f"{self.base_url}/{endpoint}"
        if self.api_key:
            params["key"] = self.api_key

        start_time = time.time()
        client = await self._client()
        try:
            response = await client.get_with_retry(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException:
            logger.error(f"API request timed out after {self.timeout}s")
            self._log_api_usage(endpoint, False)
            return None
        except httpx.HTTPError as e:
            logger.error(f"API request failed: {e}")
            self._log_api_usage(endpoint, False)
            return None

        response_time_ms = int((time.time() - start_time) * 1000)
        if response.status_code == 429:
            logger.warning("Rate limit exceeded for Google Books API")
            self._log_api_usage(endpoint, False, response_time_ms)
            raise RateLimitExceeded("Rate limit exceeded")
        if response.status_code != 200:
            logger.error(f"API request failed: {response.status_code} - {response.text}")
            self._log_api_usage(endpoint, False, response_time_ms)
            return None

        self._log_api_usage(endpoint, True, response_time_ms)
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Invalid JSON from Google Books: {e}")
            return None

    # ------------------------- Parsing ------------------------- #
    @staticmethod
    def _extract_isbn(volume_info: Dict[str, Any]) -> Optional[str]:
        for identifier in volume_info.get("industryIdentifiers", []) or []:
            if identifier.get("type") in ("ISBN_13", "ISBN_10"):
                return identifier.get("identifier")
        return None

    @staticmethod
    def volume_to_book(item: Dict[str, Any], index: int = 0) -> Book:
        """Convert one ``volumes`` item into a catalog Book"""
        volume_info = item.get("volumeInfo", {}) or {}
        authors = volume_info.get("authors") or []
        categories = volume_info.get("categories") or []
        description = volume_info.get("description")
        return Book(
            id=item.get("id") or f"google-book-{index}",
            title=volume_info.get("title") or "Untitled",
            author=", ".join(authors) or "Unknown author",
            available=True,
            image="",
            image_url=best_image_url(volume_info.get("imageLinks")),
            description=TextValidator.sanitize_text(description) if description else None,
            genre=categories[0] if categories else None,
            isbn=GoogleBooksService._extract_isbn(volume_info),
            publisher=volume_info.get("publisher"),
            published_date=volume_info.get("publishedDate"),
            units=1,
        )

    # ------------------------- Public API ------------------------- #
    async def search_books(self, query: str, max_results: int = 20) -> List[Book]:
        """
        Search volumes with a free-text query

        Args:
            query: Search terms (title, author, subject...)
            max_results: Maximum number of results, capped at 40

        Returns:
            Matching books, empty when nothing matched or the call failed
        """
        if not query or not query.strip():
            logger.warning("Empty search query provided")
            return []

        params: Dict[str, Any] = {
            "q": query.strip(),
            "maxResults": max(1, min(max_results, MAX_RESULTS_LIMIT)),
        }
        if self.language:
            params["langRestrict"] = self.language

        response = await self._make_api_request("volumes", params)
        items = (response or {}).get("items") or []
        if not items:
            logger.info(f"No books found for query: {query}")
            return []

        books = [self.volume_to_book(item, index) for index, item in enumerate(items)]
        logger.info(f"Found {len(books)} books for query: {query}")
        return books

    async def fetch_book_data(self, title: str, author: Optional[str] = None,
                              isbn: Optional[str] = None) -> BookImageData:
        """Cover image and descriptive metadata for a title, by ISBN when one is known"""
        if isbn:
            params: Dict[str, Any] = {"q": f"isbn:{ISBNValidator.normalize_isbn(isbn)}"}
        else:
            query = f"intitle:{title} inauthor:{author}" if author else f"intitle:{title}"
            params = {"q": query, "maxResults": 1}

        response = await self._make_api_request("volumes", params)
        items = (response or {}).get("items") or []
        if not items:
            return BookImageData()

        volume_info = items[0].get("volumeInfo", {}) or {}
        categories = volume_info.get("categories") or []
        return BookImageData(
            image_url=best_image_url(volume_info.get("imageLinks")),
            description=volume_info.get("description"),
            genre=categories[0] if categories else None,
            publisher=volume_info.get("publisher"),
            published_date=volume_info.get("publishedDate"),
        )

    async def fetch_book_by_isbn(self, isbn: str) -> Optional[Book]:
        clean_isbn = ISBNValidator.normalize_isbn(isbn)
        if not clean_isbn:
            logger.warning("Empty ISBN provided")
            return None

        response = await self._make_api_request("volumes", {"q": f"isbn:{clean_isbn}", "maxResults": 1})
        items = (response or {}).get("items") or []
        if not items:
            logger.info(f"Book not found in Google Books: ISBN {clean_isbn}")
            return None

        book = self.volume_to_book(items[0])
        if not book.isbn:
            book.isbn = clean_isbn
        logger.info(f"Book found via Google Books: {book.title} by {book.author}")
        return book
