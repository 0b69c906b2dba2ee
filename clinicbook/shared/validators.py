"""Shared validation utilities"""

import re
from typing import Optional


def validate_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize a patient phone number.

    Args:
        phone: Phone number string in various formats

    Returns:
        Digits only, with a leading "+" when the caller supplied one

    Raises:
        ValueError: If the number has fewer than 10 or more than 15 digits
    """
    if not phone:
        return phone

    phone = phone.strip()
    has_plus = phone.startswith("+")

    # Remove all non-digit characters
    digits = re.sub(r"\D", "", phone)

    # E.164 allows at most 15 digits; local numbers have at least 10
    if len(digits) < 10 or len(digits) > 15:
        raise ValueError("Phone number must have between 10 and 15 digits")

    return f"+{digits}" if has_plus else digits


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    # Basic email validation pattern
    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def validate_slug(slug: str) -> str:
    """Lowercase URL slug: letters, digits and single hyphens."""
    slug = slug.strip().lower()
    if not re.match(r"^[a-z0-9]+(?:-[a-z0-9]+)*$", slug):
        raise ValueError("Slug may only contain lowercase letters, digits and hyphens")
    return slug


def phone_key(phone: Optional[str]) -> str:
    """Trailing 10 digits; "+91 98765 43210" and "9876543210" share a key."""
    return re.sub(r"\D", "", phone or "")[-10:]


def phones_match(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two phone numbers on their canonical key."""
    if not a or not b:
        return False
    return phone_key(a) == phone_key(b)
