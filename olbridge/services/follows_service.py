"""Author and book follows: the subscriber sets behind fan-out and the poller."""
from __future__ import annotations

from typing import Any, Dict, List

from olbridge.db.repositories import books_repo, follows_repo
from olbridge.errors import NotFoundError
from olbridge.utils import keys
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.follows")


def _author_key(raw: str) -> str:
    key = keys.strip_author_key(raw)
    if key is None:
        raise ValueError("author_key_required")
    return key


def follow_author(user_id: str, author_key: str, author_name: str = "") -> bool:
    key = _author_key(author_key)
    created = follows_repo.follow_author(user_id, key, (author_name or "").strip())
    if created:
        LOG.debug("user %s now follows author %s", user_id, key)
    return created


def unfollow_author(user_id: str, author_key: str) -> bool:
    return follows_repo.unfollow_author(user_id, _author_key(author_key))


def is_following_author(user_id: str, author_key: str) -> bool:
    return follows_repo.is_following_author(user_id, _author_key(author_key))


def list_followed_authors(user_id: str) -> List[Dict[str, str]]:
    return [
        {"author_key": f.author_key, "author_name": f.author_name or ""}
        for f in follows_repo.list_author_follows(user_id)
    ]


def _book_id(work_key: str):
    key = keys.strip_work_key(work_key)
    if key is None:
        raise ValueError("work_key_required")
    book = books_repo.get_by_work_key(key)
    return book.id if book is not None else None


def follow_book(user_id: str, work_key: str) -> bool:
    book_id = _book_id(work_key)
    if book_id is None:
        raise NotFoundError(f"work {work_key} is not in the mirror")
    return follows_repo.follow_book(user_id, book_id)


def unfollow_book(user_id: str, work_key: str) -> bool:
    book_id = _book_id(work_key)
    if book_id is None:
        return False
    return follows_repo.unfollow_book(user_id, book_id)


def is_following_book(user_id: str, work_key: str) -> bool:
    book_id = _book_id(work_key)
    if book_id is None:
        return False
    return follows_repo.is_following_book(user_id, book_id)


def list_followed_books(user_id: str) -> List[Dict[str, Any]]:
    return [
        {
            "work_key": b.work_key,
            "book_id": b.id,
            "title": b.title,
            "authors": b.author_list(),
            "cover_url": b.cover_url or None,
        }
        for b in follows_repo.list_followed_books(user_id)
    ]


__all__ = [
    "follow_author",
    "unfollow_author",
    "is_following_author",
    "list_followed_authors",
    "follow_book",
    "unfollow_book",
    "is_following_book",
    "list_followed_books",
]
