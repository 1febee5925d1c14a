import base64
from typing import Optional

MIN_DIMENSION = 128
MAX_DIMENSION = 2048
LOG_PREVIEW_CHARS = 100


def clamp_dimension(value: int) -> int:
    """
    Clamp an image dimension into the range the server accepts.

    Args:
        value (int): Requested width or height in pixels.

    Returns:
        int: The value bounded to [128, 2048].
    """
    return max(MIN_DIMENSION, min(MAX_DIMENSION, int(value)))


def truncate_for_log(text: Optional[str], limit: int = LOG_PREVIEW_CHARS) -> str:
    """Shorten payloads and response bodies before they reach the log."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_basic_auth_header(user: str, password: str) -> Optional[str]:
    """
    Build the value of a Basic ``Authorization`` header.

    Returns None unless both the user and the password are non-empty.
    """
    if not user or not password:
        return None
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def join_url(base_url: str, path: str) -> str:
    if not path:
        return base_url
    return base_url.rstrip("/") + "/" + path.lstrip("/")
