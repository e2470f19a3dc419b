import re
import html
from typing import Optional


def sanitize_input(text: str) -> str:
    """Basic input sanitization to prevent XSS."""
    if not isinstance(text, str):
        return text
    # Remove script blocks before escaping, otherwise the tags are already entities
    sanitized = re.sub(r'<script.*?>.*?</script>', '', text, flags=re.DOTALL | re.IGNORECASE)
    return html.escape(sanitized)


def clean_comment(text: Optional[str]) -> Optional[str]:
    """Sanitize a free-text reviewer comment/remark; blank becomes None."""
    if text is None:
        return None
    text = text.strip()
    if not text:
        return None
    return sanitize_input(text)


def sanitize_filename(name: str) -> str:
    """Lower-case storage name limited to letters, digits, dots and dashes."""
    cleaned = re.sub(r'[^a-z0-9.-]', '-', (name or "").lower())
    cleaned = re.sub(r'\.+', '.', cleaned).lstrip('.')
    return cleaned or "receipt"
