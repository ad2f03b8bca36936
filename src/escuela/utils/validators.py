"""Data validation helpers."""

import re

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")


def validate_email(email: str) -> bool:
    """Validate email format.

    Args:
        email: Email address to validate

    Returns:
        True if the address looks valid, False otherwise
    """
    return bool(email) and bool(EMAIL_PATTERN.match(email))


def validate_percentage(value: float) -> bool:
    """True when value lies in the closed range 0..100."""
    return 0 <= value <= 100
