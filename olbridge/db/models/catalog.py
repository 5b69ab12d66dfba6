"""ORM models for the local catalog mirror and its per-book aggregates."""
from __future__ import annotations

import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


def split_list(value) -> list:
    """Split a comma-joined column (authors, subjects) into clean parts."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class Book(Base):
    """Mirror row for one upstream work.

    Exactly one row per ``work_key``. Fields are filled in by later
    resolves but never overwritten once non-empty; rows are never deleted
    by the integration layer.
    """

    __tablename__ = "books"

    MERGEABLE_FIELDS = (
        "title",
        "cover_url",
        "isbn13",
        "authors",
        "publication_year",
        "page_count",
        "publisher",
        "subjects",
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    work_key = Column(String(64), nullable=False, unique=True, index=True)
    title = Column(String(500), nullable=False, default="")
    cover_url = Column(String(500), nullable=False, default="")
    isbn13 = Column(String(13), nullable=False, default="", index=True)
    authors = Column(Text, nullable=False, default="")
    publication_year = Column(Integer, nullable=False, default=0)
    page_count = Column(Integer, nullable=True, default=0)
    publisher = Column(String(255), nullable=True, default="")
    subjects = Column(Text, nullable=True, default="")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def author_list(self) -> list:
        return split_list(self.authors)

    def subject_list(self) -> list:
        return split_list(self.subjects)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "work_key": self.work_key,
            "title": self.title or "",
            "cover_url": self.cover_url or "",
            "isbn13": self.isbn13 or "",
            "authors": self.author_list(),
            "publication_year": self.publication_year or 0,
            "page_count": self.page_count or 0,
            "publisher": self.publisher or "",
            "subjects": self.subject_list(),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Book id={self.id} work_key={self.work_key} title={self.title!r}>"


class BookStats(Base):
    """Derived counters for one book, maintained by the stats recomputer.

    Average rating is not stored; readers derive ``rating_sum / rating_count``.
    """

    __tablename__ = "book_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, unique=True, index=True)
    reads_count = Column(Integer, nullable=False, default=0)
    want_to_read_count = Column(Integer, nullable=False, default=0)
    rating_sum = Column(Float, nullable=False, default=0.0)
    rating_count = Column(Integer, nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def average_rating(self):
        if not self.rating_count:
            return None
        return float(self.rating_sum) / float(self.rating_count)

    def counters(self) -> dict:
        return {
            "reads_count": self.reads_count or 0,
            "want_to_read_count": self.want_to_read_count or 0,
            "rating_sum": float(self.rating_sum or 0.0),
            "rating_count": self.rating_count or 0,
            "review_count": self.review_count or 0,
        }

    def as_dict(self) -> dict:
        payload = {"book_id": self.book_id, **self.counters()}
        payload["average_rating"] = self.average_rating()
        payload["updated_at"] = _iso(self.updated_at)
        return payload


class UserBook(Base):
    """A user's rating/review row for a book (owned by the shelves feature)."""

    __tablename__ = "user_books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    rating = Column(Float, nullable=True)
    review_text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_user_books_user_book"),
    )


class BookStatusTag(Base):
    """A user's reading-state label for a book (``finished``, ``want-to-read`` ...)."""

    __tablename__ = "book_status_tags"

    STATUS_TAGS = ("finished", "want-to-read", "currently-reading", "dnf", "owned")

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    status_tag = Column(String(32), nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_book_status_tags_user_book"),
    )


__all__ = ["Base", "Book", "BookStats", "UserBook", "BookStatusTag", "utcnow", "split_list"]
