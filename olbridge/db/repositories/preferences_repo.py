"""Notification preference rows (one per user, one boolean column per type)."""
from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional

from olbridge.db import app_session
from olbridge.db.models import NOTIFICATION_TYPES, NotificationPreference


def get_row(user_id: str) -> Optional[NotificationPreference]:
    with app_session() as session:
        return (
            session.query(NotificationPreference)
            .filter(NotificationPreference.user_id == user_id)
            .one_or_none()
        )


def get_rows(user_ids: Iterable[str]) -> Dict[str, NotificationPreference]:
    ids = list({u for u in user_ids if u})
    if not ids:
        return {}
    with app_session() as session:
        rows = (
            session.query(NotificationPreference)
            .filter(NotificationPreference.user_id.in_(ids))
            .all()
        )
        return {row.user_id: row for row in rows}


def upsert_row(user_id: str, changes: Mapping[str, bool]) -> NotificationPreference:
    """Apply ``changes`` (already validated) creating an all-true row when absent."""
    with app_session() as session:
        row = (
            session.query(NotificationPreference)
            .filter(NotificationPreference.user_id == user_id)
            .one_or_none()
        )
        if row is None:
            row = NotificationPreference(user_id=user_id, **{t: True for t in NOTIFICATION_TYPES})
            session.add(row)
        for name, value in changes.items():
            setattr(row, name, bool(value))
        return row


__all__ = ["get_row", "get_rows", "upsert_row"]
