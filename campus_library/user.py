from __future__ import annotations

import json
import uuid
from datetime import date, datetime


class User:
    """A library patron, identified at login by their student ID (matrícula)."""

    def __init__(self, student_id: str, first_name: str, password_hash: str, id: str | None = None,
                 last_name: str | None = None, birth_date: str | None = None, sex: str | None = None,
                 phone: str | None = None, email: str | None = None, area: str | None = None,
                 career: str | None = None, favorite_ids: list | None = None,
                 created_at: str | None = None) -> None:
        self.id = id or uuid.uuid4().hex
        self.student_id = student_id.strip()
        self.first_name = first_name.strip()
        self.last_name = last_name
        self.birth_date = birth_date
        self.sex = sex
        self.phone = phone
        self.email = email
        self.password_hash = password_hash
        self.area = area
        self.career = career
        self.favorite_ids = list(favorite_ids or [])
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.full_name} ({self.student_id})"

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def age(self, today: date | None = None) -> int | None:
        """Age in whole years, or None when the birth date is missing or unreadable."""
        if not self.birth_date:
            return None
        try:
            born = datetime.fromisoformat(self.birth_date).date()
        except ValueError:
            return None
        today = today or date.today()
        years = today.year - born.year
        if (today.month, today.day) < (born.month, born.day):
            years -= 1
        return years

    def to_dict(self, include_secret: bool = False) -> dict:
        data = {
            "id": self.id,
            "student_id": self.student_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "birth_date": self.birth_date,
            "sex": self.sex,
            "phone": self.phone,
            "email": self.email,
            "area": self.area,
            "career": self.career,
            "favorite_ids": list(self.favorite_ids),
            "created_at": self.created_at,
        }
        if include_secret:
            data["password_hash"] = self.password_hash
        return data

    @staticmethod
    def from_dict(data: dict) -> "User":
        favorites = data.get("favorite_ids")
        if isinstance(favorites, str):
            favorites = json.loads(favorites) if favorites else []
        return User(
            id=data.get("id"),
            student_id=data["student_id"],
            first_name=data["first_name"],
            password_hash=data["password_hash"],
            last_name=data.get("last_name"),
            birth_date=data.get("birth_date"),
            sex=data.get("sex"),
            phone=data.get("phone"),
            email=data.get("email"),
            area=data.get("area"),
            career=data.get("career"),
            favorite_ids=favorites,
            created_at=data.get("created_at"),
        )
