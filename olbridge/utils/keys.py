"""Upstream identifier helpers: work/author keys, ISBNs and cover URLs."""
from __future__ import annotations

from typing import Any, Optional

from olbridge import config as app_config

WORK_PREFIX = "/works/"
AUTHOR_PREFIX = "/authors/"
COVER_SIZES = ("S", "M", "L")


def strip_work_key(raw: Any) -> Optional[str]:
    """Return the bare work key (``OL123W``) with the ``/works/`` prefix removed once."""
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip()
    if cleaned.startswith(WORK_PREFIX):
        cleaned = cleaned[len(WORK_PREFIX):]
    return cleaned or None


def strip_author_key(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip()
    if cleaned.startswith(AUTHOR_PREFIX):
        cleaned = cleaned[len(AUTHOR_PREFIX):]
    return cleaned or None


def normalize_isbn(raw: Any) -> Optional[str]:
    """Strip separators; accept 10 or 13 characters (trailing ``X`` for ISBN-10)."""
    if not isinstance(raw, str):
        return None
    cleaned = "".join(ch for ch in raw.strip().strip('="') if ch.isalnum()).upper()
    if len(cleaned) == 13 and cleaned.isdigit():
        return cleaned
    if len(cleaned) == 10 and cleaned[:9].isdigit() and (cleaned[9].isdigit() or cleaned[9] == "X"):
        return cleaned
    return None


def isbn10_to_isbn13(isbn10: str) -> str:
    core = "978" + isbn10[:9]
    total = sum(int(d) * (1 if i % 2 == 0 else 3) for i, d in enumerate(core))
    check = (10 - total % 10) % 10
    return f"{core}{check}"


def to_isbn13(raw: Any) -> Optional[str]:
    isbn = normalize_isbn(raw)
    if isbn is None:
        return None
    if len(isbn) == 10:
        return isbn10_to_isbn13(isbn)
    return isbn


def cover_url(cover_id: Any, size: str = "M") -> str:
    """Cover image URL for an upstream cover id, or ``""`` when the id is unusable."""
    if size not in COVER_SIZES:
        raise ValueError(f"invalid cover size: {size}")
    if isinstance(cover_id, bool) or not isinstance(cover_id, (int, float)):
        return ""
    if int(cover_id) <= 0:
        return ""
    return f"{app_config.COVERS_BASE_URL}/b/id/{int(cover_id)}-{size}.jpg"


def first_cover_url(covers: Any, size: str = "M") -> str:
    if not isinstance(covers, list):
        return ""
    for candidate in covers:
        url = cover_url(candidate, size)
        if url:
            return url
    return ""


def author_photo_url(author_key: str) -> str:
    return f"{app_config.COVERS_BASE_URL}/a/olid/{author_key}-M.jpg"


def author_photo_id_url(photo_id: Any) -> str:
    if isinstance(photo_id, bool) or not isinstance(photo_id, (int, float)) or int(photo_id) <= 0:
        return ""
    return f"{app_config.COVERS_BASE_URL}/a/id/{int(photo_id)}-L.jpg"


def text_value(raw: Any) -> Optional[str]:
    """Normalise upstream text that arrives either as a string or ``{"value": str}``."""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        value = raw.get("value")
        if isinstance(value, str):
            return value
    return None


__all__ = [
    "strip_work_key",
    "strip_author_key",
    "normalize_isbn",
    "isbn10_to_isbn13",
    "to_isbn13",
    "cover_url",
    "first_cover_url",
    "author_photo_url",
    "author_photo_id_url",
    "text_value",
]
