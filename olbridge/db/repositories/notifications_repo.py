"""Notification storage: bulk creation, listing and read-state updates."""
from __future__ import annotations

import datetime
from typing import List, Mapping, Optional, Sequence, Tuple

from olbridge.db import app_session
from olbridge.db.models import Notification, dump_metadata, utcnow
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.notifications_repo")


def create_notification(
    user_id: str,
    notif_type: str,
    title: str,
    body: Optional[str] = None,
    metadata: Optional[Mapping[str, str]] = None,
) -> Notification:
    with app_session() as session:
        row = Notification(
            user_id=user_id,
            notif_type=notif_type,
            title=title,
            body=body,
            metadata_json=dump_metadata(metadata),
            read=False,
            created_at=utcnow(),
        )
        session.add(row)
        return row


def create_for_recipients(
    recipients: Sequence[str],
    notif_type: str,
    title: str,
    body: Optional[str] = None,
    metadata: Optional[Mapping[str, str]] = None,
) -> int:
    """Insert one notification per recipient in a single transaction."""
    if not recipients:
        return 0
    encoded = dump_metadata(metadata)
    now = utcnow()
    with app_session() as session:
        session.add_all(
            [
                Notification(
                    user_id=user_id,
                    notif_type=notif_type,
                    title=title,
                    body=body,
                    metadata_json=encoded,
                    read=False,
                    created_at=now,
                )
                for user_id in recipients
            ]
        )
    return len(recipients)


def list_for_user(
    user_id: str,
    *,
    before: Optional[datetime.datetime] = None,
    limit: int = 30,
) -> Tuple[List[Notification], bool]:
    """Newest-first page; the flag reports whether older rows remain."""
    with app_session() as session:
        query = session.query(Notification).filter(Notification.user_id == user_id)
        if before is not None:
            query = query.filter(Notification.created_at < before)
        rows = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit + 1)
            .all()
        )
    has_more = len(rows) > limit
    return rows[:limit], has_more


def list_all_for_user(user_id: str) -> List[Notification]:
    with app_session() as session:
        return (
            session.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.id.asc())
            .all()
        )


def unread_count(user_id: str) -> int:
    with app_session() as session:
        return (
            session.query(Notification)
            .filter(Notification.user_id == user_id, Notification.read.is_(False))
            .count()
        )


def mark_read(user_id: str, notification_id: int) -> bool:
    with app_session() as session:
        updated = (
            session.query(Notification)
            .filter(
                Notification.id == notification_id,
                Notification.user_id == user_id,
                Notification.read.is_(False),
            )
            .update({Notification.read: True}, synchronize_session=False)
        )
        return bool(updated)


def mark_all_read(user_id: str) -> int:
    with app_session() as session:
        updated = (
            session.query(Notification)
            .filter(Notification.user_id == user_id, Notification.read.is_(False))
            .update({Notification.read: True}, synchronize_session=False)
        )
    if updated:
        LOG.debug("Marked %s notifications read for user %s", updated, user_id)
    return int(updated or 0)


def count_all() -> int:
    with app_session() as session:
        return session.query(Notification).count()


__all__ = [
    "create_notification",
    "create_for_recipients",
    "list_for_user",
    "list_all_for_user",
    "unread_count",
    "mark_read",
    "mark_all_read",
    "count_all",
]
