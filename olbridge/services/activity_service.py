"""User activity log."""
from __future__ import annotations

import datetime
from typing import Any, Dict, List, Mapping, Optional

from olbridge.db.models import Activity, utcnow
from olbridge.db.repositories import activities_repo
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.activity")

ACTIVITY_REFS = ("book_id", "target_user_id", "collection_ref", "thread_ref")


def clean_refs(refs: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if not refs:
        return {}
    unknown = set(refs) - set(ACTIVITY_REFS)
    if unknown:
        raise ValueError(f"unknown activity refs: {', '.join(sorted(unknown))}")
    return {k: v for k, v in refs.items() if v is not None}


def record_activity_now(
    user_id: str,
    activity_type: str,
    refs: Optional[Mapping[str, Any]] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    created_at: Optional[datetime.datetime] = None,
) -> Activity:
    if not user_id or not activity_type:
        raise ValueError("user_id_and_type_required")
    row = activities_repo.append_activity(
        user_id,
        activity_type,
        created_at=created_at or utcnow(),
        metadata=metadata,
        **clean_refs(refs),
    )
    LOG.debug("activity %s recorded for user %s", activity_type, user_id)
    return row


def list_user_activity(user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    return [a.as_dict() for a in activities_repo.list_for_user(user_id, limit=limit)]


__all__ = ["ACTIVITY_REFS", "clean_refs", "record_activity_now", "list_user_activity"]
