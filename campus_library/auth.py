import hashlib
import hmac
import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from campus_library.config import settings
from campus_library.database import get_db_connection, initialize_database
from campus_library.exceptions import (
    AuthenticationError,
    DuplicateUserError,
    UserNotFoundError,
    ValidationError,
)
from campus_library.user import User
from campus_library.validators import AccountValidator

logger = logging.getLogger(__name__)

USER_COLUMNS = (
    "id, student_id, first_name, last_name, birth_date, sex, phone, email, "
    "password_hash, area, career, favorite_ids, created_at"
)


def hash_password(password: str) -> str:
    """Hex SHA-256 of the password.

    Unsalted, so hashes already stored for existing accounts keep verifying.
    """
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def verify_password(password: str, password_hash: str) -> bool:
    return hmac.compare_digest(hash_password(password), password_hash or "")


class AuthService:
    """Student-ID login, password changes and bearer tokens."""

    def __init__(self, db_file: Optional[str] = None, secret_key: Optional[str] = None,
                 algorithm: Optional[str] = None, expiration_minutes: Optional[int] = None) -> None:
        initialize_database(db_file)
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.expiration_minutes = expiration_minutes or settings.jwt_expiration_minutes

    # ------------------------- Lookups ------------------------- #
    def find_user(self, user_id: str) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute(f"SELECT {USER_COLUMNS} FROM usuarios WHERE id = ?", (user_id,)).fetchone()
            return User.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def get_user(self, user_id: str) -> User:
        user = self.find_user(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found.")
        return user

    def find_by_student_id(self, student_id: str) -> Optional[User]:
        normalized = AccountValidator.normalize_student_id(student_id)
        conn = get_db_connection()
        try:
            row = conn.execute(
                f"SELECT {USER_COLUMNS} FROM usuarios WHERE student_id = ?", (normalized,)
            ).fetchone()
            return User.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    # ------------------------- Accounts ------------------------- #
    def create_user(self, student_id: str, password: str, first_name: str, *,
                    last_name: Optional[str] = None, email: Optional[str] = None,
                    birth_date: Optional[str] = None, sex: Optional[str] = None,
                    phone: Optional[str] = None, area: Optional[str] = None,
                    career: Optional[str] = None) -> User:
        """Register a user. The password is stored hashed."""
        student_id = AccountValidator.normalize_student_id(student_id)
        if not AccountValidator.is_valid_student_id(student_id):
            raise ValidationError(f"Invalid student ID: {student_id!r}")
        if not first_name or not first_name.strip():
            raise ValidationError("First name cannot be empty.")
        if email and not AccountValidator.is_valid_email(email):
            raise ValidationError(f"Invalid email address: {email!r}")
        AccountValidator.validate_password(password)

        user = User(
            student_id=student_id,
            first_name=first_name,
            password_hash=hash_password(password),
            last_name=last_name,
            email=email.strip() if email else None,
            birth_date=birth_date,
            sex=sex,
            phone=phone,
            area=area,
            career=career,
        )

        conn = get_db_connection()
        try:
            conn.execute(
                """
                INSERT INTO usuarios (
                    id, student_id, first_name, last_name, birth_date, sex, phone, email,
                    password_hash, area, career, favorite_ids
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user.id, user.student_id, user.first_name, user.last_name, user.birth_date,
                    user.sex, user.phone, user.email, user.password_hash, user.area, user.career,
                    json.dumps(user.favorite_ids),
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise DuplicateUserError(f"A user with student ID {student_id} already exists.") from e
        finally:
            conn.close()

        logger.info(f"User registered: {user.student_id}")
        return user

    def login(self, student_id: str, password: str) -> User:
        """Check a student ID and password pair and return the user."""
        if not student_id or not password:
            raise ValidationError("Please fill in all fields.")

        user = self.find_by_student_id(student_id)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login attempt for student ID {student_id!r}")
            raise AuthenticationError("Invalid credentials")

        logger.info(f"User logged in: {user.student_id}")
        return user

    def change_password(self, user_id: str, current_password: str, new_password: str,
                        confirm_password: str) -> None:
        if not current_password or not new_password or not confirm_password:
            raise ValidationError("Please fill in all fields.")
        AccountValidator.validate_password(new_password)
        if new_password != confirm_password:
            raise ValidationError("The new passwords do not match.")
        if current_password == new_password:
            raise ValidationError("The new password must be different from the current one.")

        user = self.get_user(user_id)
        if not verify_password(current_password, user.password_hash):
            raise AuthenticationError("The current password is incorrect.")

        conn = get_db_connection()
        try:
            conn.execute(
                "UPDATE usuarios SET password_hash = ? WHERE id = ?",
                (hash_password(new_password), user_id),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Password changed for {user.student_id}")

    # ------------------------- Tokens ------------------------- #
    def issue_token(self, user: User, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "student_id": user.student_id,
            "iat": now,
            "exp": now + timedelta(minutes=self.expiration_minutes),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> str:
        """Return the user id a token was issued for."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Session expired, please log in again.") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid token.") from e
        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Invalid token.")
        return user_id

    def user_from_token(self, token: str) -> User:
        user = self.find_user(self.verify_token(token))
        if user is None:
            raise AuthenticationError("Invalid token.")
        return user
