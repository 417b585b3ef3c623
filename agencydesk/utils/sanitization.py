import html
from typing import Optional


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """
    Escape HTML special characters to prevent XSS when the value is rendered.
    Returns None if input is None.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    return html.escape(value, quote=True)


def clean_optional_text(value: Optional[str], max_length: int = 5000) -> Optional[str]:
    """Strip whitespace, map empty strings to None and cap the length"""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return sanitize_string(value[:max_length])
