"""Publication poller: notices new works by followed authors.

One daemon thread runs the first pass ``initial_delay`` seconds after start,
then one pass every ``interval`` seconds, until the supervising cancel event
is set. Each pass compares the upstream work count of every followed author
with the stored snapshot. The first observation of an author only records
the snapshot; growth after that notifies every follower of the author.
"""
from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from olbridge.db.repositories import follows_repo, snapshots_repo
from olbridge.errors import UpstreamDecodeError, UpstreamError
from olbridge.services import notifications_service
from olbridge.utils import keys
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.publication_poller")

WORKS_SAMPLE = 5


def compose_message(author_key: str, author_name: str, new_count: int, titles: List[str]) -> Dict[str, Any]:
    """Title, body and metadata for a growth notification."""
    title = f"New work by {author_name}"
    if len(titles) == 1:
        body = f"{author_name} published a new work: {titles[0]}"
    elif len(titles) > 1:
        body = f"{author_name} published {new_count} new works: {', '.join(titles)}"
    else:
        body = f"{author_name} published {new_count} new work(s)"
    metadata = {
        "author_key": author_key,
        "author_name": author_name,
        "new_count": str(new_count),
    }
    if titles:
        metadata["new_titles"] = "; ".join(titles)
    return {"title": title, "body": body, "metadata": metadata}


class PublicationPoller:
    def __init__(
        self,
        catalog,
        *,
        interval: float = 6 * 3600.0,
        initial_delay: float = 30.0,
        chunk_size: int = notifications_service.DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.catalog = catalog
        self.interval = interval
        self.initial_delay = initial_delay
        self.chunk_size = chunk_size
        self._run_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def start(self, cancel: threading.Event) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(
            target=self.run,
            args=(cancel,),
            name="olbridge-publication-poller",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self, cancel: threading.Event) -> None:
        if cancel.wait(self.initial_delay):
            return
        while True:
            try:
                self.poll_once(cancel)
            except Exception:
                LOG.warning("publication poll failed", exc_info=True)
            if cancel.wait(self.interval):
                LOG.debug("publication poller stopped")
                return

    def poll_once(self, cancel: Optional[threading.Event] = None) -> Dict[str, int]:
        """Run one pass over every followed author; passes never overlap."""
        with self._run_lock:
            summary = {"authors": 0, "checked": 0, "skipped": 0, "notified": 0}
            authors = follows_repo.distinct_followed_authors()
            summary["authors"] = len(authors)
            if not authors:
                LOG.info("publication poll: no followed authors, skipping")
                return summary
            LOG.info("publication poll: checking %d authors", len(authors))
            for author_key, author_name in authors:
                if cancel is not None and cancel.is_set():
                    LOG.info("publication poll cancelled after %d authors", summary["checked"])
                    break
                created = self.check_author(author_key, author_name)
                if created is None:
                    summary["skipped"] += 1
                    continue
                summary["checked"] += 1
                summary["notified"] += created
            LOG.info(
                "publication poll complete: checked=%d skipped=%d notified=%d",
                summary["checked"],
                summary["skipped"],
                summary["notified"],
            )
            return summary

    def _fetch_works(self, author_key: str) -> Dict[str, Any]:
        path = f"{keys.AUTHOR_PREFIX}{author_key}/works.json?limit={WORKS_SAMPLE}"
        # Counts must be fresh each pass even though the response is cached for readers.
        data = self.catalog.fetch_json(path, refresh=True)
        size = data.get("size")
        if isinstance(size, bool) or not isinstance(size, int):
            raise UpstreamDecodeError("works response has no integer size", url=self.catalog.url_for(path))
        return data

    def check_author(self, author_key: str, author_name: str) -> Optional[int]:
        """Compare one author against its snapshot.

        Returns the number of notifications created, or ``None`` when the
        author was skipped for this pass.
        """
        try:
            data = self._fetch_works(author_key)
        except UpstreamError as exc:
            LOG.warning("skipping author %s: %s", author_key, exc)
            return None
        current = data["size"]
        entries = data.get("entries")
        titles = [
            e["title"]
            for e in (entries if isinstance(entries, list) else [])[:WORKS_SAMPLE]
            if isinstance(e, dict) and isinstance(e.get("title"), str) and e["title"]
        ]

        try:
            previous = snapshots_repo.record_work_count(author_key, current)
        except SQLAlchemyError:
            LOG.warning("snapshot update failed for author %s", author_key, exc_info=True)
            return None
        if previous is None:
            LOG.debug("first observation of author %s: %d works", author_key, current)
            return 0
        if current <= previous:
            return 0

        new_count = current - previous
        message = compose_message(author_key, author_name, new_count, titles[:new_count])
        try:
            created = notifications_service.notify_author_followers_now(
                author_key,
                message["title"],
                message["body"],
                message["metadata"],
                chunk_size=self.chunk_size,
            )
        except SQLAlchemyError:
            LOG.warning("fan-out failed for author %s", author_key, exc_info=True)
            return 0
        LOG.info("%s (%s) has %d new work(s); notified %d followers", author_name, author_key, new_count, created)
        return created


__all__ = ["PublicationPoller", "compose_message", "WORKS_SAMPLE"]
