"""Loan requests, listings and status changes.

Request validation and the per-user active-loan limit are checked inside the
same SQLite write transaction as the insert, so two concurrent requests from
one user cannot both slip under the limit. Status updates are conditional on
the status the loan had when it was read.
"""
import json
import logging
import sqlite3
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional, Tuple

from campus_library.config import settings
from campus_library.database import get_db_connection, initialize_database
from campus_library.exceptions import (
    BookUnavailableError,
    DuplicateLoanError,
    InvalidLoanTransition,
    LoanLimitExceeded,
    LoanNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from campus_library.library import Library
from campus_library.loan import Loan, LoanStatus, as_utc, due_date_for, utcnow

logger = logging.getLogger(__name__)

LOAN_COLUMNS = (
    "id, user_id, book_id, book_data, requested_at, pickup_date, due_date, "
    "returned_at, status, active"
)


def _as_pickup_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValidationError("Pickup date is required.")


class LoanService:
    """Creates loans and moves them through their lifecycle."""

    def __init__(self, library: Optional[Library] = None, db_file: Optional[str] = None,
                 period_days: Optional[int] = None, max_active_loans: Optional[int] = None) -> None:
        initialize_database(db_file)
        self.library = library or Library()
        self.period_days = period_days if period_days is not None else settings.loan_period_days
        self.max_active_loans = max_active_loans if max_active_loans is not None else settings.max_active_loans

    # ------------------------- Reads ------------------------- #
    def _query(self, sql: str, params: tuple) -> List[Loan]:
        conn = get_db_connection()
        try:
            rows = conn.execute(sql, params).fetchall()
            return [Loan.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def find_loan(self, loan_id: str) -> Optional[Loan]:
        loans = self._query(f"SELECT {LOAN_COLUMNS} FROM prestamos WHERE id = ?", (loan_id,))
        return loans[0] if loans else None

    def get_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """Fetch a loan; with ``user_id`` it must also belong to that user."""
        loan = self.find_loan(loan_id)
        if loan is None or (user_id is not None and loan.user_id != user_id):
            raise LoanNotFoundError(f"Loan {loan_id} not found.")
        return loan

    def get_active_loans(self, user_id: str) -> List[Loan]:
        """Loans whose book is still out (active or expired), soonest due first."""
        return self._query(
            f"SELECT {LOAN_COLUMNS} FROM prestamos WHERE user_id = ? AND active = 1 ORDER BY due_date ASC",
            (user_id,),
        )

    def get_loan_history(self, user_id: str) -> List[Loan]:
        """Closed loans (delivered or cancelled), latest due date first."""
        return self._query(
            f"SELECT {LOAN_COLUMNS} FROM prestamos WHERE user_id = ? AND active = 0 ORDER BY due_date DESC",
            (user_id,),
        )

    def get_loan_overview(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, List[Loan]]:
        """Loans split the way a reader sees them: active, expired and history."""
        self.refresh_statuses(now=now, user_id=user_id)
        open_loans = self.get_active_loans(user_id)
        return {
            "active": [loan for loan in open_loans if loan.status is LoanStatus.ACTIVE],
            "expired": [loan for loan in open_loans if loan.status is LoanStatus.EXPIRED],
            "history": [
                loan for loan in self.get_loan_history(user_id)
                if loan.status in (LoanStatus.DELIVERED, LoanStatus.CANCELLED)
            ],
        }

    def count_open_loans(self, user_id: str) -> int:
        conn = get_db_connection()
        try:
            return self._count_open_loans(conn, user_id)
        finally:
            conn.close()

    @staticmethod
    def _count_open_loans(conn: sqlite3.Connection, user_id: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) FROM prestamos WHERE user_id = ? AND active = 1", (user_id,)
        ).fetchone()
        return row[0]

    def can_request_loan(self, user_id: str) -> Tuple[bool, Optional[str]]:
        """Whether the user is below the active-loan limit, with a message when not."""
        if self.count_open_loans(user_id) >= self.max_active_loans:
            return False, f"You have reached the limit of {self.max_active_loans} active loans."
        return True, None

    # ------------------------- Writes ------------------------- #
    def request_loan(self, user_id: str, book_id: str, pickup_date, now: Optional[datetime] = None) -> Loan:
        """Create an active loan due ``period_days`` after pickup."""
        now = as_utc(now or utcnow())
        pickup = _as_pickup_datetime(pickup_date)
        start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if pickup < start_of_today:
            raise ValidationError("The pickup date cannot be in the past.")

        book = self.library.get_book(book_id)
        if not book.available:
            raise BookUnavailableError(f"'{book.title}' is not available for loan.")

        loan = Loan(
            user_id=user_id,
            book_id=book.id,
            book_data=book,
            requested_at=now,
            pickup_date=pickup,
            due_date=due_date_for(pickup, self.period_days),
            status=LoanStatus.ACTIVE,
        )

        conn = get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            if conn.execute("SELECT 1 FROM usuarios WHERE id = ?", (user_id,)).fetchone() is None:
                raise UserNotFoundError(f"User {user_id} not found.")

            if self._count_open_loans(conn, user_id) >= self.max_active_loans:
                raise LoanLimitExceeded(f"You have reached the limit of {self.max_active_loans} active loans.")

            duplicate = conn.execute(
                "SELECT 1 FROM prestamos WHERE user_id = ? AND book_id = ? AND active = 1",
                (user_id, book.id),
            ).fetchone()
            if duplicate:
                raise DuplicateLoanError(f"You already have '{book.title}' on loan.")

            copies_out = conn.execute(
                "SELECT COUNT(*) FROM prestamos WHERE book_id = ? AND active = 1", (book.id,)
            ).fetchone()[0]
            if copies_out >= book.units:
                raise BookUnavailableError(f"No copies of '{book.title}' are available right now.")

            conn.execute(
                f"""
                INSERT INTO prestamos ({LOAN_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    loan.id, loan.user_id, loan.book_id, json.dumps(book.to_dict()),
                    loan.requested_at.isoformat(), loan.pickup_date.isoformat(),
                    loan.due_date.isoformat(), None, loan.status.value, loan.active,
                ),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info(
            f"Loan {loan.id} requested: user={user_id} book={book.id} "
            f"pickup={loan.pickup_date.date()} due={loan.due_date.date()}"
        )
        return loan

    def _save_transition(self, loan: Loan, previous: LoanStatus) -> None:
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "UPDATE prestamos SET status = ?, active = ?, returned_at = ? WHERE id = ? AND status = ?",
                (
                    loan.status.value, loan.active,
                    loan.returned_at.isoformat() if loan.returned_at else None,
                    loan.id, previous.value,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        if cursor.rowcount == 0:
            # Someone else moved the loan first
            current = self.get_loan(loan.id)
            raise InvalidLoanTransition(current.status, loan.status)
        logger.info(f"Loan {loan.id}: {previous.value} -> {loan.status.value}")

    def _transition(self, loan_id: str, target: LoanStatus, user_id: Optional[str] = None,
                    now: Optional[datetime] = None) -> Loan:
        loan = self.get_loan(loan_id, user_id=user_id)
        previous = loan.status
        loan.transition_to(target, now=now)
        self._save_transition(loan, previous)
        return loan

    def cancel_loan(self, loan_id: str, user_id: Optional[str] = None) -> Loan:
        """Cancel an active loan. With ``user_id`` only that user's loans can be cancelled."""
        return self._transition(loan_id, LoanStatus.CANCELLED, user_id=user_id)

    def deliver_loan(self, loan_id: str, now: Optional[datetime] = None) -> Loan:
        """Record the book as returned, on time or late."""
        return self._transition(loan_id, LoanStatus.DELIVERED, now=now)

    def refresh_statuses(self, now: Optional[datetime] = None, user_id: Optional[str] = None) -> int:
        """Mark every active loan past its due date as expired. Returns how many changed."""
        now = as_utc(now or utcnow())
        sql = f"SELECT {LOAN_COLUMNS} FROM prestamos WHERE active = 1 AND status = ?"
        params: tuple = (LoanStatus.ACTIVE.value,)
        if user_id is not None:
            sql += " AND user_id = ?"
            params += (user_id,)

        expired = 0
        conn = get_db_connection()
        try:
            rows = conn.execute(sql, params).fetchall()
            overdue = [
                row["id"] for row in rows
                if Loan.from_dict(dict(row)).is_overdue(now)
            ]
            for loan_id in overdue:
                # Rows another writer already moved do not match
                cursor = conn.execute(
                    "UPDATE prestamos SET status = ? WHERE id = ? AND status = ?",
                    (LoanStatus.EXPIRED.value, loan_id, LoanStatus.ACTIVE.value),
                )
                expired += cursor.rowcount
            if overdue:
                conn.commit()
        except sqlite3.Error:
            logger.exception("Failed to refresh loan statuses")
            raise
        finally:
            conn.close()

        if expired:
            logger.info(f"Expired {expired} overdue loan(s)")
        return expired
