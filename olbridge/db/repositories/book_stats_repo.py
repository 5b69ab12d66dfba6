"""Repository helpers for ``book_stats`` and the per-user rows it is derived from."""
from __future__ import annotations

from typing import Dict, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from olbridge.db import app_session
from olbridge.db.models import Book, BookStats, BookStatusTag, UserBook
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.book_stats_repo")


def _status_count(book_id: int, tag: str):
    return (
        select(func.count(func.distinct(BookStatusTag.user_id)))
        .where(BookStatusTag.book_id == book_id, BookStatusTag.status_tag == tag)
        .scalar_subquery()
    )


def compute_counters(session: Session, book_id: int) -> Dict[str, float]:
    """Aggregate the authoritative rows for one book in a single statement.

    A single SELECT reads one consistent snapshot, so concurrent writers
    neither block it nor get half-counted.
    """
    rated = (UserBook.book_id == book_id, UserBook.rating > 0)
    stmt = select(
        select(func.count(UserBook.id)).where(*rated).scalar_subquery().label("rating_count"),
        select(func.coalesce(func.sum(UserBook.rating), 0.0)).where(*rated).scalar_subquery().label("rating_sum"),
        select(func.count(UserBook.id))
        .where(
            UserBook.book_id == book_id,
            UserBook.review_text.isnot(None),
            UserBook.review_text != "",
        )
        .scalar_subquery()
        .label("review_count"),
        _status_count(book_id, "finished").label("reads_count"),
        _status_count(book_id, "want-to-read").label("want_to_read_count"),
    )
    row = session.execute(stmt).one()
    return {
        "rating_count": int(row.rating_count or 0),
        "rating_sum": float(row.rating_sum or 0.0),
        "review_count": int(row.review_count or 0),
        "reads_count": int(row.reads_count or 0),
        "want_to_read_count": int(row.want_to_read_count or 0),
    }


def recompute_stats(book_id: int) -> Optional[BookStats]:
    """Recompute and upsert the stats row for ``book_id`` in one transaction.

    Returns ``None`` without writing when the book row does not exist.
    """
    with app_session() as session:
        if session.get(Book, book_id) is None:
            LOG.info("stats recompute skipped: book %s not found", book_id)
            return None
        counters = compute_counters(session, book_id)
        stats = session.query(BookStats).filter(BookStats.book_id == book_id).one_or_none()
        if stats is None:
            stats = BookStats(book_id=book_id)
            session.add(stats)
        for name, value in counters.items():
            setattr(stats, name, value)
        return stats


def get_stats(book_id: int) -> Optional[BookStats]:
    with app_session() as session:
        return session.query(BookStats).filter(BookStats.book_id == book_id).one_or_none()


def get_stats_map(book_ids: Iterable[int]) -> Dict[int, BookStats]:
    ids = list({int(b) for b in book_ids})
    if not ids:
        return {}
    with app_session() as session:
        rows = session.query(BookStats).filter(BookStats.book_id.in_(ids)).all()
        return {row.book_id: row for row in rows}


__all__ = ["compute_counters", "recompute_stats", "get_stats", "get_stats_map"]
