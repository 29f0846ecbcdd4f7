"""
Input sanitization and normalization utilities.

Identifiers are checked against a conservative character set, free text is
trimmed and HTML-escaped, and tag sets are normalized to plain text so that
equal sets always serialize identically.
"""

import re
import html
from typing import Iterable, List, Optional


# Maximum lengths for various fields
MAX_USER_ID_LENGTH = 255
MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 5000
MAX_TAG_LENGTH = 64
MAX_TAGS = 50
MAX_MIME_TYPE_LENGTH = 255
MAX_USERNAME_LENGTH = 64

_MIME_TYPE_RE = re.compile(r'^[a-z0-9][a-z0-9!#$&^_.+-]*/[a-z0-9][a-z0-9!#$&^_.+-]*$')
_USERNAME_RE = re.compile(r'^[a-zA-Z0-9_\-\.]+$')
_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def sanitize_user_id(user_id: str) -> str:
    """
    Sanitize a user identifier (external auth uid).

    Raises:
        ValueError: If user_id is invalid
    """
    if not user_id:
        raise ValueError("user_id cannot be empty")

    user_id = user_id.strip()

    if len(user_id) > MAX_USER_ID_LENGTH:
        raise ValueError(f"user_id exceeds maximum length of {MAX_USER_ID_LENGTH}")

    # Alphanumeric, underscore, hyphen, dot, colon, @
    if not re.match(r'^[a-zA-Z0-9_\-\.:@]+$', user_id):
        raise ValueError("user_id contains invalid characters")

    return user_id


def sanitize_username(username: str) -> str:
    if not username:
        raise ValueError("username cannot be empty")
    username = username.strip()
    if len(username) > MAX_USERNAME_LENGTH:
        raise ValueError(f"username exceeds maximum length of {MAX_USERNAME_LENGTH}")
    if not _USERNAME_RE.match(username):
        raise ValueError("username contains invalid characters")
    return username


def sanitize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValueError("email is not a valid address")
    return email


def sanitize_string(value: str, max_length: Optional[int] = None, allow_html: bool = False) -> str:
    """
    General string sanitization.

    Args:
        value: String to sanitize
        max_length: Maximum length (optional)
        allow_html: Whether to allow HTML (default: False - escapes HTML)

    Raises:
        ValueError: If value is invalid
    """
    if not isinstance(value, str):
        raise ValueError("value must be a string")

    value = value.strip()

    if max_length and len(value) > max_length:
        raise ValueError(f"value exceeds maximum length of {max_length}")

    if not allow_html:
        value = html.escape(value, quote=False)

    return value


def sanitize_optional_text(value: Optional[str], max_length: int) -> Optional[str]:
    """Like sanitize_string, but blank input becomes None."""
    if value is None:
        return None
    value = sanitize_string(value, max_length=max_length)
    return value or None


def normalize_tag(value: Optional[str]) -> Optional[str]:
    """Trim, collapse inner whitespace and lowercase one tag. Blank input gives None."""
    if value is None:
        return None
    tag = " ".join(value.split()).lower()
    return tag or None


def normalize_tags(values: Optional[Iterable[str]], field: str = "tags") -> List[str]:
    """
    Normalize a tag set: trim, lowercase, dedupe, sort.

    Tags are stored as plain text; escaping is left to whatever renders them.

    Raises:
        ValueError: If a tag is too long or there are too many tags
    """
    if values is None:
        return []
    if isinstance(values, str):
        raise ValueError(f"{field} must be a list of strings")

    seen = set()
    for raw in values:
        if not isinstance(raw, str):
            raise ValueError(f"{field} must contain only strings")
        tag = normalize_tag(raw)
        if tag is None:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"{field} entries must be at most {MAX_TAG_LENGTH} characters")
        seen.add(tag)

    if len(seen) > MAX_TAGS:
        raise ValueError(f"{field} may contain at most {MAX_TAGS} entries")
    return sorted(seen)


def sanitize_mime_type(mime_type: Optional[str]) -> Optional[str]:
    """Lowercase a MIME type and drop parameters (``; charset=...``)."""
    if mime_type is None:
        return None
    mime_type = mime_type.split(";", 1)[0].strip().lower()
    if not mime_type:
        return None
    if len(mime_type) > MAX_MIME_TYPE_LENGTH or not _MIME_TYPE_RE.match(mime_type):
        raise ValueError("mime_type is not a valid media type")
    return mime_type
