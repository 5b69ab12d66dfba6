"""Flask wiring and runtime lifecycle tests."""
from __future__ import annotations

import json
import logging

import pytest
from flask import Flask

from olbridge.config import CatalogSettings
from olbridge.db.engine import init_engine_once, reset_for_tests
from olbridge.db.repositories import books_repo, follows_repo, notifications_repo, user_books_repo
from olbridge.services.book_stats_service import get_book_stats
from olbridge.startup.runtime import CatalogRuntime
from olbridge.startup.wiring import EXTENSION_KEY, get_runtime, init_app
from olbridge.utils.logging import set_level


@pytest.fixture(autouse=True)
def _file_db(monkeypatch, tmp_path):
    reset_for_tests(drop=True)
    monkeypatch.setenv("OLBRIDGE_DB_PATH", str(tmp_path / "wiring.db"))
    yield
    reset_for_tests(drop=True)


class DummyResp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.content = json.dumps(payload if payload is not None else {}).encode("utf-8")


class FakeSession:
    def __init__(self, payload):
        self.payload = payload
        self.calls = []

    def get(self, url, timeout=None, headers=None):
        self.calls.append(url)
        return DummyResp(200, self.payload)


def _app(**config):
    app = Flask(__name__)
    app.config.update(OLBRIDGE_START_WORKERS=False, **config)
    return app


def test_init_app_reads_prefixed_config_and_registers_runtime():
    app = _app(
        OLBRIDGE_CACHE_TTL="60",
        OLBRIDGE_UPSTREAM_BASE_URL="https://mirror.example",
        OLBRIDGE_STATS_WORKER_CAP=2,
    )

    runtime = init_app(app)
    try:
        assert app.extensions[EXTENSION_KEY] is runtime
        assert runtime.settings.cache_ttl == 60.0
        assert runtime.settings.stats_worker_cap == 2
        assert runtime.client.url_for("/works/W1.json") == "https://mirror.example/works/W1.json"
        with app.app_context():
            assert get_runtime() is runtime
        assert get_runtime(app) is runtime
    finally:
        runtime.shutdown(1.0)


def test_invalid_config_value_fails_fast():
    app = _app(OLBRIDGE_POLL_INTERVAL="often")
    with pytest.raises(ValueError):
        init_app(app)


def test_get_runtime_requires_init_app():
    with pytest.raises(RuntimeError):
        get_runtime(Flask(__name__))


def test_request_path_resolve_through_wired_runtime():
    session = FakeSession({"title": "Dune", "works": [{"key": "/works/OL7W"}]})
    app = _app(OLBRIDGE_UPSTREAM_RATE_PER_SEC=100.0)
    runtime = init_app(app, http_session=session)
    try:
        work_key, book = runtime.resolve_by_isbn("9780441013593")
        runtime.resolve_by_isbn("9780441013593")
    finally:
        runtime.shutdown(1.0)

    assert work_key == "OL7W"
    assert book.isbn13 == "9780441013593"
    assert len(session.calls) == 1


def test_fire_and_forget_surface_completes_after_wait_idle():
    init_engine_once()
    book = books_repo.upsert_book("OL7W", {"title": "Dune"})
    user_books_repo.set_user_book("u1", book.id, rating=3)
    follows_repo.follow_book("u1", book.id)
    follows_repo.follow_book("u2", book.id)
    runtime = CatalogRuntime()
    try:
        runtime.refresh_stats(book.id)
        runtime.notify_book_followers(book.id, "u2", "book_new_review", "New review", "u2 reviewed Dune")
        assert runtime.wait_idle(5.0)
        assert runtime.should_notify("u1", "book_new_review")
    finally:
        runtime.shutdown(1.0)

    assert [n.title for n in notifications_repo.list_all_for_user("u1")] == ["New review"]
    assert notifications_repo.list_all_for_user("u2") == []
    assert get_book_stats(book.id)["rating_count"] == 1


def test_workers_start_and_stop_on_shutdown():
    init_engine_once()
    runtime = CatalogRuntime(CatalogSettings(poll_initial_delay=3600.0))
    runtime.start()
    poller_thread = runtime.poller._thread
    sweeper_thread = runtime.sweeper._thread
    assert poller_thread.is_alive() and sweeper_thread.is_alive()

    assert runtime.shutdown(1.0)

    assert runtime.cancel.is_set()
    assert not poller_thread.is_alive()
    assert not sweeper_thread.is_alive()
    assert runtime.record_activity("u1", "shelved") is None


def test_start_workers_flag_starts_threads(monkeypatch):
    registered = []
    monkeypatch.setattr("olbridge.startup.wiring.atexit.register", lambda fn: registered.append(fn))
    app = Flask(__name__)
    app.config.update(OLBRIDGE_START_WORKERS="yes", OLBRIDGE_POLL_INITIAL_DELAY=3600)

    runtime = init_app(app)
    try:
        assert runtime.poller._thread.is_alive()
        assert registered == [runtime.shutdown]
    finally:
        runtime.shutdown(1.0)


def test_log_level_from_app_config_applies_to_child_loggers():
    app = _app(OLBRIDGE_LOG_LEVEL="warning")
    runtime = init_app(app)
    try:
        child = logging.getLogger("olbridge.mirror")
        assert logging.getLogger("olbridge").level == logging.WARNING
        assert child.getEffectiveLevel() == logging.WARNING
    finally:
        runtime.shutdown(1.0)
        set_level("INFO")
