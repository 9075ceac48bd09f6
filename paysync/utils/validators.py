import re
from datetime import datetime

from paysync.utils.helpers import as_utc

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

def clean_str(val: str | None, max_len: int = 255) -> str | None:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s[:max_len]

def is_valid_email(val: str | None) -> bool:
    if not val:
        return False
    return bool(_EMAIL_RE.match(val))

def parse_positive_int(val) -> int | None:
    """Amounts and ids from JSON bodies: ints > 0, digit strings accepted; bools rejected."""
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, str):
        val = val.strip()
        if not val.isdigit():
            return None
    if isinstance(val, float) and not val.is_integer():
        return None
    try:
        n = int(val)
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None

def parse_iso_datetime(val: str | None) -> datetime | None:
    """ISO-8601 from clients ('Z' suffix allowed); naive values are taken as UTC."""
    if not val:
        return None
    s = str(val).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(s))
    except ValueError:
        return None
