"""Mirror resolver: keeps the local ``books`` table in step with upstream works.

Request-path operations live here. Upstream errors propagate to the caller
unless the operation documents a degraded result; nothing is written when
the upstream call fails.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote_plus

from sqlalchemy.exc import SQLAlchemyError

from olbridge.db.models import Book
from olbridge.db.repositories import book_stats_repo, books_repo
from olbridge.errors import NotFoundError, StoreError, UpstreamError, UpstreamStatusError
from olbridge.utils import keys
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.mirror")

SEARCH_PER_PAGE = 20
SEARCH_FIELDS = "key,title,author_name,first_publish_year,isbn,cover_i,edition_count,subject"
MAX_DETAIL_SUBJECTS = 10
MAX_LISTING_SUBJECTS = 3
AUTHOR_WORKS_DEFAULT_LIMIT = 24
AUTHOR_WORKS_MAX_LIMIT = 100


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _first_strings(values: Any, limit: int) -> List[str]:
    out: List[str] = []
    if not isinstance(values, list):
        return out
    for item in values:
        if isinstance(item, str) and item.strip():
            out.append(item)
            if len(out) >= limit:
                break
    return out


def _average(stats) -> Optional[float]:
    return stats.average_rating() if stats is not None else None


class MirrorResolver:
    """Mirror operations over a (cached) upstream catalog client."""

    def __init__(self, catalog) -> None:
        self.catalog = catalog

    # -- core ---------------------------------------------------------------

    def upsert_book(self, work_key: str, fields: Optional[Mapping[str, Any]] = None) -> Book:
        key = keys.strip_work_key(work_key)
        if key is None:
            raise ValueError("work_key_required")
        try:
            return books_repo.upsert_book(key, fields)
        except SQLAlchemyError as exc:
            raise StoreError(f"upsert of work {key} failed: {exc}") from exc

    def resolve_by_isbn(self, isbn: str, *, local_fallback: bool = False) -> Tuple[Optional[str], Optional[Book]]:
        """Map an ISBN to its work key via the upstream edition record.

        Returns ``(None, None)`` when the edition names no work. With
        ``local_fallback`` an upstream failure is answered from a local book
        carrying the same ISBN-13 when one exists.
        """
        clean = keys.normalize_isbn(isbn)
        if clean is None:
            raise ValueError("invalid_isbn")
        isbn13 = keys.to_isbn13(clean) or ""
        try:
            edition = self.catalog.fetch_json(f"/isbn/{clean}.json")
        except UpstreamError as exc:
            if local_fallback:
                local = books_repo.find_by_isbn13(isbn13)
                if local is not None:
                    LOG.info("ISBN %s answered from mirror after upstream error: %s", clean, exc)
                    return local.work_key, local
            raise
        works = edition.get("works")
        if not isinstance(works, list) or not works or not isinstance(works[0], dict):
            return None, None
        work_key = keys.strip_work_key(works[0].get("key"))
        if work_key is None:
            return None, None
        fields = {
            "title": _str(edition.get("title")),
            "cover_url": keys.first_cover_url(edition.get("covers"), "M"),
            "isbn13": isbn13,
        }
        return work_key, self.upsert_book(work_key, fields)

    # -- lookups ------------------------------------------------------------

    def _author_names(self, work: Mapping[str, Any]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        refs = work.get("authors")
        if not isinstance(refs, list):
            return out
        for ref in refs:
            author = ref.get("author") if isinstance(ref, dict) else None
            raw_key = author.get("key") if isinstance(author, dict) else None
            author_key = keys.strip_author_key(raw_key)
            if author_key is None:
                continue
            try:
                data = self.catalog.fetch_json(f"{keys.AUTHOR_PREFIX}{author_key}.json")
            except UpstreamError as exc:
                LOG.debug("author %s lookup failed: %s", author_key, exc)
                continue
            name = _str(data.get("name"))
            if name:
                out.append({"name": name, "key": author_key})
        return out

    def lookup_book(self, isbn: Optional[str] = None, work_key: Optional[str] = None) -> Dict[str, Any]:
        """Resolve by ISBN or work key, mirror the work, return a summary."""
        if not isbn and not work_key:
            raise ValueError("isbn_or_work_key_required")
        key = keys.strip_work_key(work_key) if work_key else None
        isbn13 = ""
        if isbn:
            clean = keys.normalize_isbn(isbn)
            if clean is None:
                raise ValueError("invalid_isbn")
            isbn13 = keys.to_isbn13(clean) or ""
            try:
                edition = self.catalog.fetch_json(f"/isbn/{clean}.json")
            except UpstreamStatusError as exc:
                if exc.status == 404:
                    raise NotFoundError(f"isbn {clean} not found") from exc
                raise
            works = edition.get("works")
            if isinstance(works, list) and works and isinstance(works[0], dict):
                key = keys.strip_work_key(works[0].get("key")) or key
        if not key:
            raise NotFoundError("book not found")
        try:
            work = self.catalog.fetch_json(f"{keys.WORK_PREFIX}{key}.json")
        except UpstreamStatusError as exc:
            if exc.status == 404:
                raise NotFoundError(f"work {key} not found") from exc
            raise
        title = _str(work.get("title"))
        cover = keys.first_cover_url(work.get("covers"), "M")
        names = [a["name"] for a in self._author_names(work)]
        book = self.upsert_book(
            key,
            {"title": title, "cover_url": cover, "isbn13": isbn13, "authors": ", ".join(names)},
        )
        return {
            "key": key,
            "book_id": book.id,
            "title": title,
            "authors": names,
            "cover_url": cover,
            "isbn": isbn or "",
        }

    def search_books(self, q: str, page: int = 1) -> Dict[str, Any]:
        """Local matches first (with stats), then upstream docs not yet mirrored."""
        query = (q or "").strip()
        if not query:
            return {"total": 0, "page": 1, "results": []}
        page = page if isinstance(page, int) and page > 0 else 1
        offset = (page - 1) * SEARCH_PER_PAGE

        local = books_repo.search_local(query, limit=SEARCH_PER_PAGE, offset=offset)
        stats = book_stats_repo.get_stats_map(b.id for b in local)
        results: List[Dict[str, Any]] = []
        seen = set()
        for book in local:
            seen.add(book.work_key)
            s = stats.get(book.id)
            results.append(
                {
                    "key": book.work_key,
                    "title": book.title,
                    "authors": book.author_list(),
                    "publish_year": book.publication_year or None,
                    "cover_url": book.cover_url or None,
                    "edition_count": 0,
                    "average_rating": _average(s),
                    "rating_count": s.rating_count if s is not None else 0,
                    "already_read_count": s.reads_count if s is not None else 0,
                    "subjects": book.subject_list()[:MAX_LISTING_SUBJECTS],
                }
            )

        upstream: Optional[Dict[str, Any]] = None
        try:
            upstream = self.catalog.fetch_json(
                f"/search.json?q={quote_plus(query)}&limit={SEARCH_PER_PAGE}"
                f"&offset={offset}&fields={SEARCH_FIELDS}"
            )
        except UpstreamError as exc:
            LOG.warning("upstream search failed q=%r: %s", query, exc)

        docs = upstream.get("docs") if upstream else None
        for doc in docs if isinstance(docs, list) else []:
            if not isinstance(doc, dict):
                continue
            key = keys.strip_work_key(doc.get("key"))
            if key is None or key in seen:
                continue
            seen.add(key)
            year = doc.get("first_publish_year")
            results.append(
                {
                    "key": key,
                    "title": _str(doc.get("title")),
                    "authors": _first_strings(doc.get("author_name"), 50),
                    "publish_year": year if isinstance(year, int) else None,
                    "cover_url": keys.cover_url(doc.get("cover_i"), "M") or None,
                    "edition_count": doc.get("edition_count") or 0,
                    "average_rating": None,
                    "rating_count": 0,
                    "already_read_count": 0,
                    "subjects": _first_strings(doc.get("subject"), MAX_LISTING_SUBJECTS),
                }
            )

        results = results[:SEARCH_PER_PAGE]
        total = len(results)
        num_found = upstream.get("numFound") if upstream else None
        if isinstance(num_found, int) and num_found > total:
            total = num_found
        return {"total": total, "page": page, "results": results}

    def get_book_detail(self, work_key: str) -> Dict[str, Any]:
        key = keys.strip_work_key(work_key)
        if key is None:
            raise ValueError("work_key_required")
        local = books_repo.get_by_work_key(key)

        work: Optional[Dict[str, Any]] = None
        try:
            work = self.catalog.fetch_json(f"{keys.WORK_PREFIX}{key}.json")
        except UpstreamError as exc:
            if local is None:
                if isinstance(exc, UpstreamStatusError) and exc.status == 404:
                    raise NotFoundError(f"work {key} not found") from exc
                raise
            LOG.info("work %s detail served from mirror: %s", key, exc)

        title = ""
        description = None
        cover = ""
        authors: List[Dict[str, Any]] = []
        subjects: List[str] = []
        if work is not None:
            title = _str(work.get("title"))
            description = keys.text_value(work.get("description"))
            cover = keys.first_cover_url(work.get("covers"), "L")
            authors = self._author_names(work)
            subjects = _first_strings(work.get("subjects"), MAX_DETAIL_SUBJECTS)

        if not title and local is not None:
            title = local.title
            cover = local.cover_url or cover
            authors = [{"name": name, "key": None} for name in local.author_list()]
        if not subjects and local is not None:
            subjects = local.subject_list()[:MAX_DETAIL_SUBJECTS]
        if not title and local is None:
            raise NotFoundError(f"work {key} not found")

        edition_count = 0
        try:
            editions = self.catalog.fetch_json(f"{keys.WORK_PREFIX}{key}/editions.json?limit=0")
            size = editions.get("size")
            if isinstance(size, int):
                edition_count = size
        except UpstreamError as exc:
            LOG.debug("edition count for %s unavailable: %s", key, exc)

        stats = book_stats_repo.get_stats(local.id) if local is not None else None
        return {
            "key": key,
            "title": title,
            "authors": authors,
            "description": description,
            "cover_url": cover or None,
            "average_rating": _average(stats),
            "rating_count": stats.rating_count if stats is not None else 0,
            "local_reads_count": stats.reads_count if stats is not None else 0,
            "local_want_to_read_count": stats.want_to_read_count if stats is not None else 0,
            "publisher": (local.publisher or None) if local is not None else None,
            "page_count": (local.page_count or None) if local is not None else None,
            "first_publish_year": (local.publication_year or None) if local is not None else None,
            "edition_count": edition_count,
            "subjects": subjects,
        }

    def get_book_editions(self, work_key: str, limit: int = 20) -> Dict[str, Any]:
        key = keys.strip_work_key(work_key)
        if key is None:
            raise ValueError("work_key_required")
        try:
            return self.catalog.fetch_json(f"{keys.WORK_PREFIX}{key}/editions.json?limit={int(limit)}")
        except UpstreamError as exc:
            LOG.warning("editions for %s unavailable: %s", key, exc)
            return {"entries": []}

    def search_authors(self, q: str) -> Dict[str, Any]:
        query = (q or "").strip()
        if not query:
            return {"total": 0, "results": []}
        try:
            data = self.catalog.fetch_json(f"/search/authors.json?q={quote_plus(query)}&limit=20")
        except UpstreamError as exc:
            LOG.warning("upstream author search failed q=%r: %s", query, exc)
            return {"total": 0, "results": []}
        total = data.get("numFound") if isinstance(data.get("numFound"), int) else 0
        results = []
        docs = data.get("docs")
        for doc in docs if isinstance(docs, list) else []:
            if not isinstance(doc, dict):
                continue
            key = _str(doc.get("key"))
            results.append(
                {
                    "key": key,
                    "name": _str(doc.get("name")),
                    "birth_date": doc.get("birth_date"),
                    "death_date": doc.get("death_date"),
                    "top_work": doc.get("top_work"),
                    "work_count": doc.get("work_count"),
                    "top_subjects": doc.get("top_subjects"),
                    "photo_url": keys.author_photo_url(key) if key else None,
                }
            )
        return {"total": total, "results": results}

    def get_author_detail(self, author_key: str, limit: int = AUTHOR_WORKS_DEFAULT_LIMIT, offset: int = 0) -> Dict[str, Any]:
        key = keys.strip_author_key(author_key)
        if key is None:
            raise ValueError("author_key_required")
        limit = min(max(int(limit), 1), AUTHOR_WORKS_MAX_LIMIT)
        offset = max(int(offset), 0)
        try:
            author = self.catalog.fetch_json(f"{keys.AUTHOR_PREFIX}{key}.json")
        except UpstreamError as exc:
            raise NotFoundError(f"author {key} not found") from exc

        photos = author.get("photos")
        photo = keys.author_photo_id_url(photos[0]) if isinstance(photos, list) and photos else ""
        links = []
        raw_links = author.get("links")
        for item in raw_links if isinstance(raw_links, list) else []:
            if isinstance(item, dict) and _str(item.get("title")) and _str(item.get("url")):
                links.append({"title": item["title"], "url": item["url"]})

        work_count = 0
        works: List[Dict[str, Any]] = []
        try:
            data = self.catalog.fetch_json(f"{keys.AUTHOR_PREFIX}{key}/works.json?limit={limit}&offset={offset}")
        except UpstreamError as exc:
            LOG.debug("works for author %s unavailable: %s", key, exc)
            data = None
        if data is not None:
            if isinstance(data.get("size"), int):
                work_count = data["size"]
            entries = data.get("entries")
            for entry in entries if isinstance(entries, list) else []:
                if not isinstance(entry, dict):
                    continue
                works.append(
                    {
                        "key": keys.strip_work_key(entry.get("key")) or "",
                        "title": _str(entry.get("title")),
                        "cover_url": keys.first_cover_url(entry.get("covers"), "M") or None,
                    }
                )

        return {
            "key": key,
            "name": _str(author.get("name")),
            "bio": keys.text_value(author.get("bio")),
            "birth_date": author.get("birth_date") if isinstance(author.get("birth_date"), str) else None,
            "death_date": author.get("death_date") if isinstance(author.get("death_date"), str) else None,
            "photo_url": photo or None,
            "links": links,
            "work_count": work_count,
            "works": works,
        }


__all__ = ["MirrorResolver", "SEARCH_PER_PAGE"]
