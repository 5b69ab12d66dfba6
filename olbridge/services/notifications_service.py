"""Notification fan-out, preferences and inbox operations.

A notification is created for a recipient only when ``should_notify`` allows
the type at creation time. Preference lookups that fail are treated as
"no preferences", which allows every type.
"""
from __future__ import annotations

import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from olbridge.db.models import NOTIFICATION_TYPES, NotificationPreference
from olbridge.db.repositories import follows_repo, notifications_repo, preferences_repo
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.notifications")

DEFAULT_PAGE_SIZE = 30
DEFAULT_CHUNK_SIZE = 200


def _allows(row: Optional[NotificationPreference], notif_type: str) -> bool:
    if row is None or notif_type not in NOTIFICATION_TYPES:
        return True
    return bool(getattr(row, notif_type))


def should_notify(user_id: str, notif_type: str) -> bool:
    try:
        row = preferences_repo.get_row(user_id)
    except SQLAlchemyError:
        LOG.warning("preference lookup failed for user %s; allowing %s", user_id, notif_type, exc_info=True)
        return True
    return _allows(row, notif_type)


def filter_recipients(recipients: Sequence[str], notif_type: str) -> List[str]:
    """Recipients for which ``should_notify`` holds, looked up in one query."""
    try:
        rows = preferences_repo.get_rows(recipients)
    except SQLAlchemyError:
        LOG.warning("bulk preference lookup failed; allowing %d recipients", len(recipients), exc_info=True)
        return list(recipients)
    return [u for u in recipients if _allows(rows.get(u), notif_type)]


def _chunks(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def deliver(
    recipients: Sequence[str],
    notif_type: str,
    title: str,
    body: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Create one notification per recipient; returns how many were stored.

    Chunks are inserted in one transaction each. A failed chunk is retried
    row by row so one bad recipient does not cost the others.
    """
    created = 0
    for chunk in _chunks(list(recipients), max(1, chunk_size)):
        try:
            created += notifications_repo.create_for_recipients(chunk, notif_type, title, body, metadata)
            continue
        except SQLAlchemyError:
            LOG.warning("bulk notification insert failed; retrying %d rows singly", len(chunk), exc_info=True)
        for user_id in chunk:
            try:
                notifications_repo.create_notification(user_id, notif_type, title, body, metadata)
                created += 1
            except SQLAlchemyError:
                LOG.warning("notification for user %s failed", user_id, exc_info=True)
    return created


def notify_book_followers_now(
    book_id: int,
    actor: Optional[str],
    notif_type: str,
    title: str,
    body: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    followers = follows_repo.book_follower_ids(book_id, exclude_user=actor)
    if not followers:
        return 0
    eligible = filter_recipients(followers, notif_type)
    created = deliver(eligible, notif_type, title, body, metadata, chunk_size=chunk_size)
    LOG.info(
        "book %s %s fan-out: followers=%d notified=%d",
        book_id,
        notif_type,
        len(followers),
        created,
    )
    return created


def notify_author_followers_now(
    author_key: str,
    title: str,
    body: str,
    metadata: Optional[Mapping[str, Any]] = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """``new_publication`` to every follower of the author; following is the consent."""
    followers = follows_repo.author_follower_ids(author_key)
    return deliver(followers, "new_publication", title, body, metadata, chunk_size=chunk_size)


def notify_user(
    user_id: str,
    notif_type: str,
    title: str,
    body: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> bool:
    if not should_notify(user_id, notif_type):
        return False
    notifications_repo.create_notification(user_id, notif_type, title, body, metadata)
    return True


def _parse_cursor(cursor: Optional[str]) -> Optional[datetime.datetime]:
    if not cursor:
        return None
    try:
        value = datetime.datetime.fromisoformat(cursor)
    except ValueError as exc:
        raise ValueError("invalid_cursor") from exc
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value


def list_notifications(user_id: str, cursor: Optional[str] = None, limit: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
    rows, has_more = notifications_repo.list_for_user(user_id, before=_parse_cursor(cursor), limit=limit)
    payload: Dict[str, Any] = {"notifications": [r.as_dict() for r in rows]}
    if has_more and rows:
        payload["next_cursor"] = rows[-1].created_at.isoformat()
    return payload


def unread_count(user_id: str) -> int:
    return notifications_repo.unread_count(user_id)


def mark_read(user_id: str, notification_id: int) -> bool:
    return notifications_repo.mark_read(user_id, notification_id)


def mark_all_read(user_id: str) -> int:
    return notifications_repo.mark_all_read(user_id)


def get_preferences(user_id: str) -> Dict[str, bool]:
    row = preferences_repo.get_row(user_id)
    if row is None:
        return {t: True for t in NOTIFICATION_TYPES}
    return row.as_dict()


def update_preferences(user_id: str, changes: Mapping[str, Any]) -> Dict[str, bool]:
    """Apply boolean values for known types; anything else is ignored."""
    valid = {k: v for k, v in (changes or {}).items() if k in NOTIFICATION_TYPES and isinstance(v, bool)}
    ignored = set(changes or {}) - set(valid)
    if ignored:
        LOG.debug("ignoring preference keys for user %s: %s", user_id, sorted(ignored))
    return preferences_repo.upsert_row(user_id, valid).as_dict()


__all__ = [
    "should_notify",
    "filter_recipients",
    "deliver",
    "notify_book_followers_now",
    "notify_author_followers_now",
    "notify_user",
    "list_notifications",
    "unread_count",
    "mark_read",
    "mark_all_read",
    "get_preferences",
    "update_preferences",
]
