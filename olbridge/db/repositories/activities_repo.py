"""Append-only activity log storage."""
from __future__ import annotations

import datetime
from typing import List, Mapping, Optional

from olbridge.db import app_session
from olbridge.db.models import Activity, dump_metadata


def append_activity(
    user_id: str,
    activity_type: str,
    *,
    created_at: datetime.datetime,
    book_id: Optional[int] = None,
    target_user_id: Optional[str] = None,
    collection_ref: Optional[str] = None,
    thread_ref: Optional[str] = None,
    metadata: Optional[Mapping[str, str]] = None,
) -> Activity:
    with app_session() as session:
        row = Activity(
            user_id=user_id,
            activity_type=activity_type,
            book_id=book_id,
            target_user_id=target_user_id,
            collection_ref=collection_ref,
            thread_ref=thread_ref,
            metadata_json=dump_metadata(metadata),
            created_at=created_at,
        )
        session.add(row)
        return row


def list_for_user(user_id: str, limit: int = 50) -> List[Activity]:
    with app_session() as session:
        return (
            session.query(Activity)
            .filter(Activity.user_id == user_id)
            .order_by(Activity.created_at.desc(), Activity.id.desc())
            .limit(limit)
            .all()
        )


def count_for_user(user_id: str) -> int:
    with app_session() as session:
        return session.query(Activity).filter(Activity.user_id == user_id).count()


__all__ = ["append_activity", "list_for_user", "count_for_user"]
