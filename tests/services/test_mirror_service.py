"""Mirror resolver tests against an in-memory store and a scripted upstream."""
from __future__ import annotations

import json
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from olbridge.db import app_session
from olbridge.db.engine import init_engine_once, reset_for_tests
from olbridge.db.models import Book
from olbridge.db.repositories import book_stats_repo, books_repo, user_books_repo
from olbridge.errors import NotFoundError, UpstreamStatusError, UpstreamTransportError
from olbridge.services.mirror_service import MirrorResolver
from olbridge.services.response_cache import CachedCatalogClient, ResponseCache
from olbridge.services.upstream_client import UpstreamClient


@pytest.fixture(autouse=True)
def _memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("OLBRIDGE_DB_PATH", ":memory:")
    init_engine_once()
    yield
    reset_for_tests(drop=True)


class DummyResp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.content = json.dumps(payload if payload is not None else {}).encode("utf-8")


class FakeSession:
    """Routes GETs by URL path; unknown paths answer 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, timeout=None, headers=None):
        self.calls.append(url)
        outcome = self.routes.get(urlsplit(url).path)
        if outcome is None:
            return DummyResp(404, {"error": "notfound"})
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _resolver(routes=None):
    session = FakeSession(routes)
    client = UpstreamClient("https://ol.test", session=session, rate_per_sec=None)
    catalog = CachedCatalogClient(client, ResponseCache(3600.0))
    return MirrorResolver(catalog), session


def _book_count():
    with app_session() as session:
        return session.query(Book).count()


FOX_EDITION = {
    "title": "Fantastic Mr Fox",
    "covers": [-1, 8739161],
    "works": [{"key": "/works/OL45804W"}],
}


def test_resolve_by_isbn_mirrors_work_with_title_cover_and_isbn13():
    resolver, session = _resolver({"/isbn/9780140328721.json": DummyResp(200, FOX_EDITION)})

    work_key, book = resolver.resolve_by_isbn("978-0-14-032872-1")

    assert work_key == "OL45804W"
    assert book.work_key == "OL45804W"
    assert book.title == "Fantastic Mr Fox"
    assert book.cover_url == "https://covers.openlibrary.org/b/id/8739161-M.jpg"
    assert book.isbn13 == "9780140328721"
    assert session.calls == ["https://ol.test/isbn/9780140328721.json"]


def test_resolve_by_isbn10_stores_isbn13():
    resolver, session = _resolver({"/isbn/014032872X.json": DummyResp(200, FOX_EDITION)})

    _key, book = resolver.resolve_by_isbn("0-14-032872-x")

    assert book.isbn13 == "9780140328721"
    assert session.calls[0].endswith("/isbn/014032872X.json")


def test_resolved_book_round_trips_through_upsert_unchanged():
    resolver, _session = _resolver({"/isbn/9780140328721.json": DummyResp(200, FOX_EDITION)})
    work_key, book = resolver.resolve_by_isbn("9780140328721")

    again = resolver.upsert_book(work_key, {})

    assert again.id == book.id
    assert again.as_dict() == book.as_dict()
    assert _book_count() == 1


def test_resolve_by_isbn_without_works_returns_none_and_writes_nothing():
    resolver, _session = _resolver({"/isbn/9780000000002.json": DummyResp(200, {"title": "Orphan", "works": []})})

    assert resolver.resolve_by_isbn("9780000000002") == (None, None)
    assert _book_count() == 0


def test_resolve_by_isbn_rejects_malformed_isbn_before_any_request():
    resolver, session = _resolver()

    with pytest.raises(ValueError):
        resolver.resolve_by_isbn("12-34")
    assert session.calls == []


def test_resolve_by_isbn_failure_writes_nothing():
    resolver, _session = _resolver({"/isbn/9780140328721.json": DummyResp(503)})

    with pytest.raises(UpstreamStatusError) as excinfo:
        resolver.resolve_by_isbn("9780140328721")

    assert excinfo.value.status == 503
    assert _book_count() == 0


def test_resolve_by_isbn_local_fallback_answers_from_mirror():
    books_repo.upsert_book("OL45804W", {"title": "Fantastic Mr Fox", "isbn13": "9780140328721"})
    resolver, _session = _resolver({"/isbn/9780140328721.json": DummyResp(500)})

    work_key, book = resolver.resolve_by_isbn("9780140328721", local_fallback=True)

    assert work_key == "OL45804W"
    assert book.title == "Fantastic Mr Fox"


def test_resolve_by_isbn_local_fallback_without_match_still_raises():
    resolver, _session = _resolver({"/isbn/9780140328721.json": DummyResp(500)})

    with pytest.raises(UpstreamStatusError):
        resolver.resolve_by_isbn("9780140328721", local_fallback=True)


def test_upsert_book_strips_prefix_once():
    resolver, _session = _resolver()

    first = resolver.upsert_book("/works/OL1W", {"title": "One"})
    second = resolver.upsert_book("OL1W", {"title": "Other"})

    assert first.work_key == "OL1W"
    assert second.id == first.id
    assert second.title == "One"


def test_upsert_book_rejects_empty_key():
    resolver, _session = _resolver()
    with pytest.raises(ValueError):
        resolver.upsert_book("/works/", {})


def test_lookup_book_by_work_key_mirrors_authors():
    resolver, _session = _resolver(
        {
            "/works/OL7W.json": DummyResp(
                200,
                {"title": "Dune", "covers": [42], "authors": [{"author": {"key": "/authors/OL9A"}}]},
            ),
            "/authors/OL9A.json": DummyResp(200, {"name": "Frank Herbert"}),
        }
    )

    summary = resolver.lookup_book(work_key="/works/OL7W")

    assert summary["key"] == "OL7W"
    assert summary["authors"] == ["Frank Herbert"]
    stored = books_repo.get_by_work_key("OL7W")
    assert stored.authors == "Frank Herbert"
    assert stored.cover_url.endswith("/b/id/42-M.jpg")


def test_lookup_book_unknown_work_is_not_found():
    resolver, _session = _resolver()
    with pytest.raises(NotFoundError):
        resolver.lookup_book(work_key="OL404W")


def test_lookup_book_unknown_isbn_is_not_found_and_writes_nothing():
    resolver, _session = _resolver()

    with pytest.raises(NotFoundError):
        resolver.lookup_book(isbn="9780000000002")

    assert _book_count() == 0


def test_lookup_book_by_isbn_follows_edition_to_work():
    resolver, _session = _resolver(
        {
            "/isbn/9780441013593.json": DummyResp(200, {"title": "Dune", "works": [{"key": "/works/OL7W"}]}),
            "/works/OL7W.json": DummyResp(200, {"title": "Dune"}),
        }
    )

    summary = resolver.lookup_book(isbn="978-0-441-01359-3")

    assert summary["key"] == "OL7W"
    assert summary["title"] == "Dune"
    assert books_repo.get_by_work_key("OL7W").isbn13 == "9780441013593"


def test_book_detail_accepts_description_object_and_counts_editions():
    book = books_repo.upsert_book("OL7W", {"title": "Dune", "publisher": "Chilton", "publication_year": 1965})
    user_books_repo.set_user_book("u1", book.id, rating=4)
    book_stats_repo.recompute_stats(book.id)
    resolver, _session = _resolver(
        {
            "/works/OL7W.json": DummyResp(
                200,
                {
                    "title": "Dune",
                    "description": {"type": "/type/text", "value": "Desert planet."},
                    "covers": [42],
                    "subjects": ["Science fiction", "Arrakis"],
                    "authors": [{"author": {"key": "/authors/OL9A"}}],
                },
            ),
            "/authors/OL9A.json": DummyResp(200, {"name": "Frank Herbert"}),
            "/works/OL7W/editions.json": DummyResp(200, {"size": 12, "entries": []}),
        }
    )

    detail = resolver.get_book_detail("/works/OL7W")

    assert detail["description"] == "Desert planet."
    assert detail["authors"] == [{"name": "Frank Herbert", "key": "OL9A"}]
    assert detail["cover_url"] == "https://covers.openlibrary.org/b/id/42-L.jpg"
    assert detail["edition_count"] == 12
    assert detail["average_rating"] == pytest.approx(4.0)
    assert detail["rating_count"] == 1
    assert detail["publisher"] == "Chilton"
    assert detail["first_publish_year"] == 1965
    assert detail["subjects"] == ["Science fiction", "Arrakis"]


def test_book_detail_plain_string_description():
    resolver, _session = _resolver({"/works/OL8W.json": DummyResp(200, {"title": "T", "description": "Plain."})})

    assert resolver.get_book_detail("OL8W")["description"] == "Plain."


def test_book_detail_falls_back_to_mirror_when_upstream_fails():
    books_repo.upsert_book("OL7W", {"title": "Dune", "authors": "Frank Herbert", "cover_url": "https://c/x.jpg"})
    resolver, _session = _resolver({"/works/OL7W.json": DummyResp(502)})

    detail = resolver.get_book_detail("OL7W")

    assert detail["title"] == "Dune"
    assert detail["authors"] == [{"name": "Frank Herbert", "key": None}]
    assert detail["edition_count"] == 0


def test_book_detail_missing_everywhere_is_not_found():
    resolver, _session = _resolver()
    with pytest.raises(NotFoundError):
        resolver.get_book_detail("OL404W")


def test_book_detail_transport_error_without_mirror_propagates():
    resolver, _session = _resolver({"/works/OL1W.json": requests.ConnectionError("down")})
    with pytest.raises(UpstreamTransportError):
        resolver.get_book_detail("OL1W")


def test_search_books_lists_local_first_then_unmirrored_upstream_docs():
    local = books_repo.upsert_book("OL7W", {"title": "Dune", "authors": "Frank Herbert"})
    user_books_repo.set_user_book("u1", local.id, rating=5)
    book_stats_repo.recompute_stats(local.id)
    resolver, session = _resolver(
        {
            "/search.json": DummyResp(
                200,
                {
                    "numFound": 57,
                    "docs": [
                        {"key": "/works/OL7W", "title": "Dune"},
                        {"key": "/works/OL8W", "title": "Dune Messiah", "author_name": ["Frank Herbert"], "cover_i": 9},
                    ],
                },
            )
        }
    )

    result = resolver.search_books("dune")

    assert result["total"] == 57
    assert [r["key"] for r in result["results"]] == ["OL7W", "OL8W"]
    assert result["results"][0]["average_rating"] == pytest.approx(5.0)
    assert result["results"][1]["cover_url"].endswith("/b/id/9-M.jpg")
    query = parse_qs(urlsplit(session.calls[0]).query)
    assert query["q"] == ["dune"]
    assert query["limit"] == ["20"]


def test_search_books_keeps_local_results_when_upstream_fails():
    books_repo.upsert_book("OL7W", {"title": "Dune"})
    resolver, _session = _resolver({"/search.json": DummyResp(500)})

    result = resolver.search_books("Dune")

    assert result["total"] == 1
    assert result["results"][0]["key"] == "OL7W"


def test_search_books_blank_query_makes_no_request():
    resolver, session = _resolver()
    assert resolver.search_books("   ") == {"total": 0, "page": 1, "results": []}
    assert session.calls == []


def test_get_book_editions_degrades_to_empty_on_error():
    resolver, _session = _resolver({"/works/OL7W/editions.json": DummyResp(500)})
    assert resolver.get_book_editions("OL7W") == {"entries": []}


def test_search_authors_builds_photo_urls():
    resolver, _session = _resolver(
        {"/search/authors.json": DummyResp(200, {"numFound": 1, "docs": [{"key": "OL9A", "name": "Frank Herbert"}]})}
    )

    result = resolver.search_authors("herbert")

    assert result["total"] == 1
    assert result["results"][0]["photo_url"] == "https://covers.openlibrary.org/a/olid/OL9A-M.jpg"


def test_author_detail_clamps_limit_and_reads_works():
    resolver, session = _resolver(
        {
            "/authors/OL9A.json": DummyResp(200, {"name": "Frank Herbert", "bio": {"value": "Writer."}, "photos": [77]}),
            "/authors/OL9A/works.json": DummyResp(
                200, {"size": 30, "entries": [{"key": "/works/OL7W", "title": "Dune", "covers": [42]}]}
            ),
        }
    )

    detail = resolver.get_author_detail("/authors/OL9A", limit=500)

    assert detail["name"] == "Frank Herbert"
    assert detail["bio"] == "Writer."
    assert detail["photo_url"] == "https://covers.openlibrary.org/a/id/77-L.jpg"
    assert detail["work_count"] == 30
    assert detail["works"][0]["key"] == "OL7W"
    works_call = [c for c in session.calls if "/works.json" in c][0]
    assert parse_qs(urlsplit(works_call).query)["limit"] == ["100"]


def test_author_detail_unknown_author_is_not_found():
    resolver, _session = _resolver()
    with pytest.raises(NotFoundError):
        resolver.get_author_detail("OL404A")
