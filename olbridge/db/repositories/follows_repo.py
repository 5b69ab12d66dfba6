"""Author and book follow edges (the subscriber sets used by fan-out)."""
from __future__ import annotations

from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from olbridge.db import app_session
from olbridge.db.models import AuthorFollow, Book, BookFollow
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.follows_repo")


def follow_author(user_id: str, author_key: str, author_name: str = "") -> bool:
    """Create the edge; returns False when it already existed."""
    try:
        with app_session() as session:
            exists = (
                session.query(AuthorFollow.id)
                .filter(AuthorFollow.user_id == user_id, AuthorFollow.author_key == author_key)
                .first()
            )
            if exists:
                return False
            session.add(AuthorFollow(user_id=user_id, author_key=author_key, author_name=author_name or ""))
            return True
    except IntegrityError:
        LOG.debug("Author follow %s -> %s created concurrently", user_id, author_key)
        return False


def unfollow_author(user_id: str, author_key: str) -> bool:
    with app_session() as session:
        deleted = (
            session.query(AuthorFollow)
            .filter(AuthorFollow.user_id == user_id, AuthorFollow.author_key == author_key)
            .delete(synchronize_session=False)
        )
        return bool(deleted)


def is_following_author(user_id: str, author_key: str) -> bool:
    with app_session() as session:
        return (
            session.query(AuthorFollow.id)
            .filter(AuthorFollow.user_id == user_id, AuthorFollow.author_key == author_key)
            .first()
            is not None
        )


def list_author_follows(user_id: str) -> List[AuthorFollow]:
    with app_session() as session:
        return (
            session.query(AuthorFollow)
            .filter(AuthorFollow.user_id == user_id)
            .order_by(AuthorFollow.author_name.asc(), AuthorFollow.author_key.asc())
            .all()
        )


def distinct_followed_authors() -> List[tuple]:
    """``(author_key, author_name)`` per followed author key.

    Followers may have stored different display names for one key; the
    greatest non-empty name wins so the result is stable across runs.
    """
    with app_session() as session:
        rows = session.query(AuthorFollow.author_key, AuthorFollow.author_name).all()
    names: Dict[str, str] = {}
    for key, name in rows:
        current = names.get(key, "")
        candidate = name or ""
        if key not in names or candidate > current:
            names[key] = candidate
    return sorted(names.items())


def author_follower_ids(author_key: str) -> List[str]:
    with app_session() as session:
        rows = (
            session.query(AuthorFollow.user_id)
            .filter(AuthorFollow.author_key == author_key)
            .order_by(AuthorFollow.id.asc())
            .all()
        )
    return [r[0] for r in rows]


def follow_book(user_id: str, book_id: int) -> bool:
    try:
        with app_session() as session:
            exists = (
                session.query(BookFollow.id)
                .filter(BookFollow.user_id == user_id, BookFollow.book_id == book_id)
                .first()
            )
            if exists:
                return False
            session.add(BookFollow(user_id=user_id, book_id=book_id))
            return True
    except IntegrityError:
        LOG.debug("Book follow %s -> %s created concurrently", user_id, book_id)
        return False


def unfollow_book(user_id: str, book_id: int) -> bool:
    with app_session() as session:
        deleted = (
            session.query(BookFollow)
            .filter(BookFollow.user_id == user_id, BookFollow.book_id == book_id)
            .delete(synchronize_session=False)
        )
        return bool(deleted)


def is_following_book(user_id: str, book_id: int) -> bool:
    with app_session() as session:
        return (
            session.query(BookFollow.id)
            .filter(BookFollow.user_id == user_id, BookFollow.book_id == book_id)
            .first()
            is not None
        )


def list_followed_books(user_id: str) -> List[Book]:
    with app_session() as session:
        return (
            session.query(Book)
            .join(BookFollow, BookFollow.book_id == Book.id)
            .filter(BookFollow.user_id == user_id)
            .order_by(BookFollow.created_at.desc(), BookFollow.id.desc())
            .all()
        )


def book_follower_ids(book_id: int, exclude_user: Optional[str] = None) -> List[str]:
    with app_session() as session:
        query = session.query(BookFollow.user_id).filter(BookFollow.book_id == book_id)
        if exclude_user is not None:
            query = query.filter(BookFollow.user_id != exclude_user)
        rows = query.order_by(BookFollow.id.asc()).all()
    return [r[0] for r in rows]


__all__ = [
    "follow_author",
    "unfollow_author",
    "is_following_author",
    "list_author_follows",
    "distinct_followed_authors",
    "author_follower_ids",
    "follow_book",
    "unfollow_book",
    "is_following_book",
    "list_followed_books",
    "book_follower_ids",
]
