"""ORM models for activity, notifications, follows and author snapshots."""
from __future__ import annotations

import json

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .catalog import Base, utcnow

# Closed set: each type is also a column on notification_preferences.
NOTIFICATION_TYPES = (
    "new_publication",
    "book_new_thread",
    "book_new_link",
    "book_new_review",
    "review_liked",
    "thread_mention",
    "book_recommendation",
    "review_comment",
)


def dump_metadata(metadata) -> str | None:
    if not metadata:
        return None
    return json.dumps({str(k): str(v) for k, v in metadata.items()}, ensure_ascii=False, sort_keys=True)


def load_metadata(raw) -> dict:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class Activity(Base):
    """Append-only user activity event."""

    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    activity_type = Column(String(64), nullable=False)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=True)
    target_user_id = Column(String(64), nullable=True)
    collection_ref = Column(String(64), nullable=True)
    thread_ref = Column(String(64), nullable=True)
    metadata_json = Column("metadata", Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.activity_type,
            "book_id": self.book_id,
            "target_user_id": self.target_user_id,
            "collection_ref": self.collection_ref,
            "thread_ref": self.thread_ref,
            "metadata": load_metadata(self.metadata_json),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Notification(Base):
    """Per-recipient notification. Only ``read`` changes after creation."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    notif_type = Column(String(64), nullable=False)
    title = Column(String(500), nullable=False, default="")
    body = Column(Text, nullable=True)
    metadata_json = Column("metadata", Text, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    def metadata_dict(self) -> dict:
        return load_metadata(self.metadata_json)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "notif_type": self.notif_type,
            "title": self.title,
            "body": self.body,
            "metadata": self.metadata_dict(),
            "read": bool(self.read),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class NotificationPreference(Base):
    """One row per user, one boolean column per notification type.

    Absence of a row means every type is enabled.
    """

    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    new_publication = Column(Boolean, nullable=False, default=True)
    book_new_thread = Column(Boolean, nullable=False, default=True)
    book_new_link = Column(Boolean, nullable=False, default=True)
    book_new_review = Column(Boolean, nullable=False, default=True)
    review_liked = Column(Boolean, nullable=False, default=True)
    thread_mention = Column(Boolean, nullable=False, default=True)
    book_recommendation = Column(Boolean, nullable=False, default=True)
    review_comment = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def as_dict(self) -> dict:
        return {t: bool(getattr(self, t)) for t in NOTIFICATION_TYPES}


class AuthorFollow(Base):
    __tablename__ = "author_follows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    author_key = Column(String(64), nullable=False, index=True)
    author_name = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "author_key", name="uq_author_follows_user_author"),
    )


class BookFollow(Base):
    __tablename__ = "book_follows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_book_follows_user_book"),
    )


class AuthorWorksSnapshot(Base):
    """Last observed upstream work count per followed author."""

    __tablename__ = "author_works_snapshot"

    id = Column(Integer, primary_key=True, autoincrement=True)
    author_key = Column(String(64), nullable=False, unique=True, index=True)
    work_count = Column(Integer, nullable=False, default=0)
    checked_at = Column(DateTime, default=utcnow, nullable=False)


__all__ = [
    "NOTIFICATION_TYPES",
    "Activity",
    "Notification",
    "NotificationPreference",
    "AuthorFollow",
    "BookFollow",
    "AuthorWorksSnapshot",
    "dump_metadata",
    "load_metadata",
]
