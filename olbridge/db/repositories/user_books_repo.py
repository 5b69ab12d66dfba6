"""Per-user rating/review and status-tag rows.

These tables belong to the shelves feature; the helpers here cover what the
catalog layer reads plus the writes needed to seed them.
"""
from __future__ import annotations

from typing import Optional

from olbridge.db import app_session
from olbridge.db.models import BookStatusTag, UserBook


def set_user_book(
    user_id: str,
    book_id: int,
    *,
    rating: Optional[float] = None,
    review_text: Optional[str] = None,
) -> UserBook:
    with app_session() as session:
        row = (
            session.query(UserBook)
            .filter(UserBook.user_id == user_id, UserBook.book_id == book_id)
            .one_or_none()
        )
        if row is None:
            row = UserBook(user_id=user_id, book_id=book_id)
            session.add(row)
        row.rating = rating
        row.review_text = review_text
        return row


def remove_user_book(user_id: str, book_id: int) -> bool:
    with app_session() as session:
        deleted = (
            session.query(UserBook)
            .filter(UserBook.user_id == user_id, UserBook.book_id == book_id)
            .delete(synchronize_session=False)
        )
        return bool(deleted)


def set_status_tag(user_id: str, book_id: int, status_tag: str) -> BookStatusTag:
    if status_tag not in BookStatusTag.STATUS_TAGS:
        raise ValueError(f"unknown status tag: {status_tag}")
    with app_session() as session:
        row = (
            session.query(BookStatusTag)
            .filter(BookStatusTag.user_id == user_id, BookStatusTag.book_id == book_id)
            .one_or_none()
        )
        if row is None:
            row = BookStatusTag(user_id=user_id, book_id=book_id, status_tag=status_tag)
            session.add(row)
        else:
            row.status_tag = status_tag
        return row


def clear_status_tag(user_id: str, book_id: int) -> bool:
    with app_session() as session:
        deleted = (
            session.query(BookStatusTag)
            .filter(BookStatusTag.user_id == user_id, BookStatusTag.book_id == book_id)
            .delete(synchronize_session=False)
        )
        return bool(deleted)


__all__ = [
    "set_user_book",
    "remove_user_book",
    "set_status_tag",
    "clear_status_tag",
]
