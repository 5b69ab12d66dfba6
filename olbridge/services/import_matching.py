"""Match imported reading-list rows ``(title, author, isbn?)`` to upstream works.

Strategies run in order and the first hit wins:

1. local mirror row with the same ISBN-13
2. ``/isbn/<isbn>.json`` edition lookup
3. ``/search.json?isbn=`` across all editions
4. cleaned title plus cleaned author
5. cleaned title with a leading author name removed (title must match)
6. title shortened at its first comma (title must match)

Export titles carry series markers, subtitles, format words and embedded
author credits, so titles and authors are cleaned before searching. An
upstream error inside a strategy moves on to the next one.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus

from sqlalchemy.exc import SQLAlchemyError

from olbridge.db.repositories import books_repo
from olbridge.errors import UpstreamError
from olbridge.utils import keys
from olbridge.utils.logging import get_logger

LOG = get_logger("olbridge.import_matching")

_SEARCH_FIELDS = "key,title,author_name,first_publish_year,cover_i"
_FORMAT_WORDS = ("Paperback", "Hardcover", "Mass Market")
_PLACEHOLDER_AUTHORS = {"unknown author", "unknown", "various", "anonymous"}
_STOP_WORDS = {"the", "a", "an", "of", "and", "in", "to", "for"}


@dataclass
class ImportMatch:
    title: str
    author: str
    status: str = "unmatched"
    work_key: Optional[str] = None
    match_title: str = ""
    authors: List[str] = field(default_factory=list)
    cover_url: str = ""
    strategy: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.status == "matched"

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"title": self.title, "author": self.author, "status": self.status}
        if self.matched:
            payload["match"] = {
                "work_key": self.work_key,
                "title": self.match_title or self.title,
                "authors": self.authors or ([self.author] if self.author else []),
                "cover_url": self.cover_url or None,
                "strategy": self.strategy,
            }
        return payload


def clean_title(title: str) -> str:
    """Strip brackets, embedded credits, parentheticals, subtitles and format words.

    >>> clean_title("Children of Ruin (Children of Time, #2)")
    'Children of Ruin'
    >>> clean_title("The Wealth of Nations/Books I-III")
    'The Wealth of Nations'
    """
    title = (title or "").replace("[", "").replace("]", "").strip()

    # " by ..." only counts once at least two words precede it ("Stand by Me").
    lower = title.lower()
    for sep in (" by ", " by:"):
        idx = lower.find(sep)
        if idx > 0:
            before = title[:idx].strip()
            if " " in before:
                title = before
                break

    if title.startswith("By "):
        rest = title[3:]
        for sep in (" The ", " A ", " An "):
            idx = rest.find(sep)
            if idx > 0:
                candidate = rest[idx:].strip()
                if len(candidate) > 3:
                    title = candidate
                    break

    while True:
        idx = title.rfind("(")
        if idx <= 0:
            break
        title = title[:idx].strip()

    if title.startswith("(") and title.endswith(")"):
        title = title[1:-1]

    for sep in (" | ", "|", "/", ":"):
        idx = title.find(sep)
        if idx > 0:
            title = title[:idx].strip()

    while True:
        trimmed = title.rstrip(" .,")
        changed = False
        for suffix in _FORMAT_WORDS:
            if trimmed.endswith(suffix):
                trimmed = trimmed[: -len(suffix)].strip()
                changed = True
        title = trimmed
        if not changed:
            break
    return title.strip()


def clean_author(author: str) -> str:
    """Author name fit for search, or ``""`` when it should not be used."""
    author = (author or "").strip()
    if not author:
        return ""
    if author.lower() in _PLACEHOLDER_AUTHORS:
        return ""
    # Mangled multi-author values ("Leo ; Bradbury Margulies").
    if ";" in author:
        return ""
    # Concatenated names ("PrimoLevi").
    if " " not in author and len(author) > 1:
        return ""
    parts = [p for p in author.split() if not (len(p.rstrip(".")) == 1 and p.rstrip(".").isupper())]
    return " ".join(parts) if parts else author


def _norm(value: str) -> str:
    return value.lower().replace(".", "").replace(",", "")


def strip_author_prefix(title: str, author: str) -> str:
    """Drop an author name prepended to the title ("Arthur C. Clark Expedition to Earth")."""
    if not author or len(title) <= len(author):
        return title
    norm_title = _norm(title)
    norm_author = _norm(author)
    if norm_title.startswith(norm_author):
        rest = title[len(author):].strip()
        if len(rest) > 3:
            return rest

    title_words = norm_title.split()
    author_words = norm_author.split()
    if len(author_words) >= 2 and len(title_words) > len(author_words):
        first, last = author_words[0], author_words[-1]
        if title_words[0] == first:
            # Last name may be misspelled; compare three-letter prefixes.
            for i in range(1, min(len(title_words), len(author_words) + 2)):
                word = title_words[i]
                if len(word) >= 3 and len(last) >= 3 and (word.startswith(last[:3]) or last.startswith(word[:3])):
                    original = title.split()
                    if i + 1 < len(original):
                        rest = " ".join(original[i + 1:])
                        if len(rest) > 3:
                            return rest
                    break
    return title


def title_matches(search_title: str, result_title: str) -> bool:
    s = search_title.lower()
    r = result_title.lower()
    if s in r or r in s:
        return True
    wanted = {w for w in s.split() if w not in _STOP_WORDS and len(w) > 2}
    if not wanted:
        return False
    hits = sum(1 for w in r.split() if w in wanted)
    return hits > 0 and hits / len(wanted) >= 0.5


def _first_doc(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    docs = data.get("docs")
    if not isinstance(docs, list) or not docs or not isinstance(docs[0], dict):
        return None
    doc = docs[0]
    if keys.strip_work_key(doc.get("key")) is None:
        return None
    return doc


class ImportMatcher:
    def __init__(self, catalog) -> None:
        self.catalog = catalog

    def _search(self, query: str) -> Optional[Dict[str, Any]]:
        data = self.catalog.fetch_json(f"/search.json?{query}&fields={_SEARCH_FIELDS}&limit=1")
        return _first_doc(data)

    @staticmethod
    def _accept(match: ImportMatch, doc: Dict[str, Any], strategy: str) -> ImportMatch:
        match.status = "matched"
        match.work_key = keys.strip_work_key(doc.get("key"))
        match.match_title = doc.get("title") if isinstance(doc.get("title"), str) else ""
        names = doc.get("author_name")
        match.authors = [n for n in names if isinstance(n, str)] if isinstance(names, list) else []
        match.cover_url = keys.cover_url(doc.get("cover_i"), "M")
        match.strategy = strategy
        return match

    def _by_local_isbn(self, match: ImportMatch, isbn13: str) -> bool:
        try:
            book = books_repo.find_by_isbn13(isbn13)
        except SQLAlchemyError:
            LOG.warning("local ISBN lookup failed for %s", isbn13, exc_info=True)
            return False
        if book is None or not book.work_key:
            return False
        match.status = "matched"
        match.work_key = book.work_key
        match.match_title = book.title
        match.authors = book.author_list()
        match.cover_url = book.cover_url or ""
        match.strategy = "local_isbn"
        return True

    def _by_isbn_endpoint(self, match: ImportMatch, isbn: str) -> bool:
        edition = self.catalog.fetch_json(f"/isbn/{isbn}.json")
        works = edition.get("works")
        if not isinstance(works, list) or not works or not isinstance(works[0], dict):
            return False
        work_key = keys.strip_work_key(works[0].get("key"))
        if work_key is None:
            return False
        match.status = "matched"
        match.work_key = work_key
        match.match_title = edition.get("title") if isinstance(edition.get("title"), str) else ""
        match.cover_url = keys.first_cover_url(edition.get("covers"), "M")
        match.strategy = "isbn"
        return True

    def match(self, title: str, author: str, isbn: Optional[str] = None) -> ImportMatch:
        result = ImportMatch(title=(title or "").strip(), author=(author or "").strip())
        clean_isbn = keys.normalize_isbn(isbn) if isbn else None

        if clean_isbn:
            if self._by_local_isbn(result, keys.to_isbn13(clean_isbn) or clean_isbn):
                return result
            try:
                if self._by_isbn_endpoint(result, clean_isbn):
                    return result
            except UpstreamError as exc:
                LOG.debug("isbn endpoint failed for %s: %s", clean_isbn, exc)
            try:
                doc = self._search(f"isbn={quote_plus(clean_isbn)}")
                if doc is not None:
                    return self._accept(result, doc, "isbn_search")
            except UpstreamError as exc:
                LOG.debug("isbn search failed for %s: %s", clean_isbn, exc)

        if not result.title:
            return result
        cleaned = clean_title(result.title)
        cleaned_author = clean_author(result.author)

        def by_title(query_title: str, check: bool, strategy: str, with_author: bool) -> bool:
            query = f"title={quote_plus(query_title)}"
            if with_author and cleaned_author:
                query += f"&author={quote_plus(cleaned_author)}"
            try:
                doc = self._search(query)
            except UpstreamError as exc:
                LOG.debug("%s search failed for %r: %s", strategy, query_title, exc)
                return False
            if doc is None:
                return False
            if check and not title_matches(query_title, doc.get("title") if isinstance(doc.get("title"), str) else ""):
                return False
            self._accept(result, doc, strategy)
            return True

        if cleaned and by_title(cleaned, False, "title_author", True):
            return result
        stripped = strip_author_prefix(cleaned, result.author)
        if stripped and by_title(stripped, True, "title_only", False):
            return result
        idx = cleaned.find(",")
        if idx > 0:
            shortened = cleaned[:idx].strip()
            if len(shortened) > 3 and by_title(shortened, True, "short_title", True):
                return result
        return result


__all__ = [
    "ImportMatch",
    "ImportMatcher",
    "clean_title",
    "clean_author",
    "strip_author_prefix",
    "title_matches",
]
