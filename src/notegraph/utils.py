"""Utility functions for notegraph."""
import datetime
import re
from typing import Optional

from notegraph.exceptions import ErrorCode, ValidationError

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Prevents SQL LIKE pattern injection where user input containing
    '%' or '_' could match unintended patterns.

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def parse_iso_date(value: Optional[str], field: str = "date") -> Optional[datetime.datetime]:
    """Parse an ISO 8601 date or datetime into an aware UTC datetime.

    A bare ``YYYY-MM-DD`` means midnight UTC of that day. Naive datetimes
    are treated as UTC.

    Raises:
        ValidationError: If the value is not ISO 8601.
    """
    if value is None or not value.strip():
        return None
    raw = value.strip()
    if _DATE_ONLY.match(raw):
        raw = f"{raw}T00:00:00+00:00"
    elif raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.datetime.fromisoformat(raw)
    except ValueError as e:
        raise ValidationError(
            f"Invalid ISO 8601 {field}: {value!r}",
            field=field,
            value=value,
            code=ErrorCode.INVALID_DATE,
        ) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def preview(text: str, length: int = 100) -> str:
    """First ``length`` characters of ``text`` on a single line."""
    return re.sub(r"\s*\n\s*", " ", text or "").strip()[:length]
