"""Loan entity and the rules of its lifecycle.

A loan starts ``active`` and moves one way only::

    active -> expired     (due date passed, book still out)
    active -> delivered   (book returned)
    active -> cancelled   (request withdrawn before pickup)
    expired -> delivered  (late return)

Dates are timezone-aware UTC; naive values are read as UTC.
"""
from __future__ import annotations

import json
import math
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from campus_library.book import Book
from campus_library.exceptions import InvalidLoanTransition

DEFAULT_LOAN_PERIOD_DAYS = 5
MS_PER_DAY = 24 * 60 * 60 * 1000


class LoanStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    LoanStatus.ACTIVE: {LoanStatus.EXPIRED, LoanStatus.DELIVERED, LoanStatus.CANCELLED},
    LoanStatus.EXPIRED: {LoanStatus.DELIVERED},
    LoanStatus.DELIVERED: set(),
    LoanStatus.CANCELLED: set(),
}

# Statuses in which the book is still with the borrower
OPEN_STATUSES = (LoanStatus.ACTIVE, LoanStatus.EXPIRED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(value))


def due_date_for(pickup_date: datetime, period_days: int = DEFAULT_LOAN_PERIOD_DAYS) -> datetime:
    """Due date is the pickup date plus the loan period."""
    return as_utc(pickup_date) + timedelta(days=period_days)


def days_remaining(due_date: datetime, now: datetime | None = None) -> int:
    """Whole days left until ``due_date``, rounded up; negative once overdue."""
    now = as_utc(now or utcnow())
    delta_ms = (as_utc(due_date) - now) / timedelta(milliseconds=1)
    return math.ceil(delta_ms / MS_PER_DAY)


class Loan:
    """A book borrowed by a user, with its dates and current status."""

    def __init__(self, user_id: str, book_id: str, book_data: Book, requested_at: datetime,
                 pickup_date: datetime, due_date: datetime, status: LoanStatus = LoanStatus.ACTIVE,
                 id: str | None = None, returned_at: datetime | None = None) -> None:
        self.id = id or uuid.uuid4().hex
        self.user_id = user_id
        self.book_id = book_id
        self.book_data = book_data
        self.requested_at = as_utc(requested_at)
        self.pickup_date = as_utc(pickup_date)
        self.due_date = as_utc(due_date)
        self.returned_at = as_utc(returned_at) if returned_at else None
        self.status = LoanStatus(status)

    @property
    def active(self) -> bool:
        return self.status in OPEN_STATUSES

    def days_remaining(self, now: datetime | None = None) -> int:
        if self.status is not LoanStatus.ACTIVE:
            return 0
        return days_remaining(self.due_date, now)

    def is_overdue(self, now: datetime | None = None) -> bool:
        return self.due_date < as_utc(now or utcnow())

    def can_transition_to(self, target: LoanStatus) -> bool:
        return LoanStatus(target) in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, target: LoanStatus, now: datetime | None = None) -> None:
        target = LoanStatus(target)
        if not self.can_transition_to(target):
            raise InvalidLoanTransition(self.status, target)
        self.status = target
        if target is LoanStatus.DELIVERED:
            self.returned_at = as_utc(now or utcnow())

    def to_dict(self, now: datetime | None = None) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "book_data": self.book_data.to_dict(),
            "requested_at": self.requested_at.isoformat(),
            "pickup_date": self.pickup_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "returned_at": self.returned_at.isoformat() if self.returned_at else None,
            "status": self.status.value,
            "active": self.active,
            "days_remaining": self.days_remaining(now),
        }

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        book_data = data["book_data"]
        if isinstance(book_data, str):
            book_data = json.loads(book_data)
        return Loan(
            id=data.get("id"),
            user_id=data["user_id"],
            book_id=data["book_id"],
            book_data=book_data if isinstance(book_data, Book) else Book.from_dict(book_data),
            requested_at=parse_datetime(data["requested_at"]),
            pickup_date=parse_datetime(data["pickup_date"]),
            due_date=parse_datetime(data["due_date"]),
            returned_at=parse_datetime(data.get("returned_at")),
            status=LoanStatus(data["status"]),
        )
