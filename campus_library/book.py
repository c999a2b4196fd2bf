from __future__ import annotations

import uuid


class Book:
    """Represents a single title in the catalog."""

    def __init__(self, title: str, author: str, id: str | None = None, available: bool = True,
                 image: str | None = None, image_url: str | None = None, description: str | None = None,
                 genre: str | None = None, isbn: str | None = None, publisher: str | None = None,
                 published_date: str | None = None, units: int | None = None,
                 created_at: str | None = None) -> None:
        self.id = (id or "").strip() or uuid.uuid4().hex
        self.title = title.strip()
        self.author = author.strip()
        self.available = bool(available)
        # Legacy bundled-asset name; image_url wins when both are set
        self.image = image or ""
        self.image_url = image_url
        self.description = description
        self.genre = genre
        self.isbn = isbn.strip() if isbn else None
        self.publisher = publisher
        self.published_date = published_date
        self.units = 1 if units is None else int(units)
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (id: {self.id})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "available": self.available,
            "image": self.image,
            "image_url": self.image_url,
            "description": self.description,
            "genre": self.genre,
            "isbn": self.isbn,
            "publisher": self.publisher,
            "published_date": self.published_date,
            "units": self.units,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            # SQLite hands booleans back as 0/1
            available=bool(data.get("available", True)),
            image=data.get("image"),
            image_url=data.get("image_url"),
            description=data.get("description"),
            genre=data.get("genre"),
            isbn=data.get("isbn"),
            publisher=data.get("publisher"),
            published_date=data.get("published_date"),
            units=data.get("units"),
            created_at=data.get("created_at"),
        )
