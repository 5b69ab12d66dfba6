"""Repository helpers for the ``books`` mirror.

``upsert_book`` applies the fill-empty rule: a supplied value replaces the
stored one only when the stored value is empty (``""``/``0``/``None``) and
the supplied one is not. Repeating a call with the same arguments is a
no-op, so concurrent resolves of the same work converge on one row.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from olbridge.db import app_session
from olbridge.db.models import Book
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.books_repo")

_INT_FIELDS = {"publication_year", "page_count"}


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == 0


def clean_fields(fields: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Validate and normalise a partial book record."""
    if not fields:
        return {}
    unknown = set(fields) - set(Book.MERGEABLE_FIELDS)
    if unknown:
        raise ValueError(f"unknown book fields: {', '.join(sorted(unknown))}")
    cleaned: Dict[str, Any] = {}
    for name, value in fields.items():
        if name in _INT_FIELDS:
            try:
                cleaned[name] = int(value) if value not in (None, "") else 0
            except (TypeError, ValueError):
                cleaned[name] = 0
        else:
            cleaned[name] = value.strip() if isinstance(value, str) else ("" if value is None else str(value))
    return cleaned


def merge_fill_empty(book: Book, values: Mapping[str, Any]) -> bool:
    changed = False
    for name, value in values.items():
        if _is_empty(getattr(book, name)) and not _is_empty(value):
            setattr(book, name, value)
            changed = True
    return changed


def _upsert_in_session(session: Session, work_key: str, values: Mapping[str, Any]) -> Book:
    book = session.query(Book).filter(Book.work_key == work_key).one_or_none()
    if book is None:
        book = Book(work_key=work_key, **values)
        session.add(book)
        session.flush()
        return book
    if merge_fill_empty(book, values):
        LOG.debug("Filled empty fields for work %s", work_key)
    return book


def upsert_book(work_key: str, fields: Optional[Mapping[str, Any]] = None) -> Book:
    """Find or create the mirror row for ``work_key`` (already unprefixed)."""
    key = (work_key or "").strip()
    if not key:
        raise ValueError("work_key_required")
    values = clean_fields(fields)
    try:
        with app_session() as session:
            return _upsert_in_session(session, key, values)
    except IntegrityError:
        # Lost an insert race for the same work key; merge into the winner.
        LOG.debug("Concurrent insert for work %s, retrying as merge", key)
        with app_session() as session:
            return _upsert_in_session(session, key, values)


def get_by_work_key(work_key: str) -> Optional[Book]:
    with app_session() as session:
        return session.query(Book).filter(Book.work_key == work_key).one_or_none()


def find_by_isbn13(isbn13: str) -> Optional[Book]:
    if not isbn13:
        return None
    with app_session() as session:
        return (
            session.query(Book)
            .filter(Book.isbn13 == isbn13)
            .order_by(Book.id.asc())
            .first()
        )


def search_local(query: str, *, limit: int = 20, offset: int = 0) -> List[Book]:
    """Title/authors substring match, newest rows first."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    with app_session() as session:
        return (
            session.query(Book)
            .filter(or_(Book.title.like(pattern, escape="\\"), Book.authors.like(pattern, escape="\\")))
            .order_by(Book.created_at.desc(), Book.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )


def list_book_ids() -> List[int]:
    with app_session() as session:
        return [row[0] for row in session.query(Book.id).order_by(Book.id.asc()).all()]


__all__ = [
    "clean_fields",
    "merge_fill_empty",
    "upsert_book",
    "get_by_work_key",
    "find_by_isbn13",
    "search_local",
    "list_book_ids",
]
