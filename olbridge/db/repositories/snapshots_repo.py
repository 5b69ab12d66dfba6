"""Author work-count snapshots, owned by the publication poller."""
from __future__ import annotations

from typing import Optional

from olbridge.db import app_session
from olbridge.db.models import AuthorWorksSnapshot, utcnow


def record_work_count(author_key: str, current: int) -> Optional[int]:
    """Upsert the snapshot to ``current`` and return the previous count.

    ``None`` means the author had never been observed. Read and write happen
    in one transaction.
    """
    with app_session() as session:
        row = (
            session.query(AuthorWorksSnapshot)
            .filter(AuthorWorksSnapshot.author_key == author_key)
            .one_or_none()
        )
        now = utcnow()
        if row is None:
            session.add(AuthorWorksSnapshot(author_key=author_key, work_count=current, checked_at=now))
            return None
        previous = int(row.work_count or 0)
        row.work_count = current
        row.checked_at = now
        return previous


def get_snapshot(author_key: str) -> Optional[AuthorWorksSnapshot]:
    with app_session() as session:
        return (
            session.query(AuthorWorksSnapshot)
            .filter(AuthorWorksSnapshot.author_key == author_key)
            .one_or_none()
        )


def set_snapshot(author_key: str, work_count: int) -> AuthorWorksSnapshot:
    with app_session() as session:
        row = (
            session.query(AuthorWorksSnapshot)
            .filter(AuthorWorksSnapshot.author_key == author_key)
            .one_or_none()
        )
        if row is None:
            row = AuthorWorksSnapshot(author_key=author_key)
            session.add(row)
        row.work_count = work_count
        row.checked_at = utcnow()
        return row


__all__ = ["record_work_count", "get_snapshot", "set_snapshot"]
