import re
from typing import Optional

from campus_library.config import settings
from campus_library.exceptions import ValidationError


class ISBNValidator:
    """ISBN-10 / ISBN-13 checksum validation."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        if not isbn:
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            total = 0
            for i, ch in enumerate(s[:-1], 1):
                if not ch.isdigit():
                    return False
                total += i * int(ch)
            check = s[-1]
            if check == 'X':
                check_val = 10
            elif check.isdigit():
                check_val = int(check)
            else:
                return False
            # sum of i * d_i for i = 1..10 must be divisible by 11
            return (total + 10 * check_val) % 11 == 0
        elif len(s) == 13 and s.isdigit():
            total = 0
            for i, ch in enumerate(s[:-1]):
                factor = 1 if i % 2 == 0 else 3
                total += factor * int(ch)
            check_val = (10 - (total % 10)) % 10
            return check_val == int(s[-1])
        return False


class AccountValidator:
    """Validation of the fields users type in: student ID, email and password."""

    STUDENT_ID_PATTERN = re.compile(r"^[A-Za-z]{0,5}\d{4,12}$")
    EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    @staticmethod
    def normalize_student_id(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return raw.strip().upper()

    @staticmethod
    def is_valid_student_id(student_id: Optional[str]) -> bool:
        s = AccountValidator.normalize_student_id(student_id)
        return bool(AccountValidator.STUDENT_ID_PATTERN.match(s))

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if not email:
            return False
        return bool(AccountValidator.EMAIL_PATTERN.match(email.strip()))

    @staticmethod
    def validate_password(password: Optional[str], min_length: Optional[int] = None) -> None:
        """Raise ValidationError when the password is too short."""
        min_length = settings.min_password_length if min_length is None else min_length
        if not password or len(password) < min_length:
            raise ValidationError(f"Password must be at least {min_length} characters long.")


class TextValidator:
    """Basic text checks for catalog fields."""

    @staticmethod
    def require(value: Optional[str], field_name: str) -> str:
        if value is None or not value.strip():
            raise ValidationError(f"{field_name} cannot be empty.")
        return value.strip()

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        if text is None:
            return ""
        # strip HTML tags, Google Books descriptions come with markup
        return re.sub(r"<[^>]*>", "", text).strip()
