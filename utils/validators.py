import re
from datetime import date
from typing import Optional, Any

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class YearValidator:
    """Publication years: whole numbers, not in the future."""

    @staticmethod
    def is_valid_year(year: Any) -> bool:
        if isinstance(year, bool):
            return False
        try:
            value = int(year)
        except (TypeError, ValueError):
            return False
        if isinstance(year, float) and not year.is_integer():
            return False
        return 0 < value <= date.today().year + 1


class TextValidator:
    """Basic text validations and sanitization."""

    @staticmethod
    def _is_non_empty(text: Optional[str]) -> bool:
        if text is None:
            return False
        return bool(text.strip())

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        return TextValidator._is_non_empty(title)

    @staticmethod
    def validate_author(author: Optional[str]) -> bool:
        # must not be digits only
        if not TextValidator._is_non_empty(author):
            return False
        return not author.strip().isdigit()

    @staticmethod
    def validate_email(email: Optional[str]) -> bool:
        if email is None:
            return False
        return bool(EMAIL_RE.match(email.strip()))

    @staticmethod
    def sanitize_text(text: str) -> str:
        if text is None:
            return ""
        # strip HTML tags
        return re.sub(r"<[^>]*>", "", text)
