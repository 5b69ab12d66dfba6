"""Stats recomputer tests (file-backed store so worker threads share it)."""
from __future__ import annotations

import threading
import time

import pytest

from olbridge.db.engine import init_engine_once, reset_for_tests
from olbridge.db.repositories import book_stats_repo, books_repo, user_books_repo
from olbridge.services.book_stats_service import StatsRecomputer, get_book_stats


@pytest.fixture(autouse=True)
def _file_db(monkeypatch, tmp_path):
    reset_for_tests(drop=True)
    monkeypatch.setenv("OLBRIDGE_DB_PATH", str(tmp_path / "stats.db"))
    init_engine_once()
    yield
    reset_for_tests(drop=True)


@pytest.fixture()
def recomputer():
    r = StatsRecomputer(worker_cap=2)
    yield r
    r.shutdown(2.0)


def _seed_book():
    book = books_repo.upsert_book("OL1W", {"title": "Seeded"})
    user_books_repo.set_user_book("u1", book.id, rating=4)
    user_books_repo.set_user_book("u2", book.id, rating=5, review_text="good")
    user_books_repo.set_user_book("u4", book.id, rating=0, review_text="")
    user_books_repo.set_status_tag("u3", book.id, "finished")
    user_books_repo.set_status_tag("u4", book.id, "want-to-read")
    user_books_repo.set_status_tag("u5", book.id, "currently-reading")
    return book


def test_refresh_recomputes_counters_from_user_rows(recomputer):
    book = _seed_book()

    recomputer.refresh(book.id)
    assert recomputer.wait_idle(5.0)

    stats = book_stats_repo.get_stats(book.id)
    assert stats.counters() == {
        "reads_count": 1,
        "want_to_read_count": 1,
        "rating_sum": 9.0,
        "rating_count": 2,
        "review_count": 1,
    }
    assert stats.average_rating() == pytest.approx(4.5)


def test_recompute_is_idempotent(recomputer):
    book = _seed_book()

    first = recomputer.recompute_now(book.id).counters()
    second = recomputer.recompute_now(book.id).counters()

    assert first == second


def test_recompute_tracks_removed_rows(recomputer):
    book = _seed_book()
    recomputer.recompute_now(book.id)

    user_books_repo.remove_user_book("u2", book.id)
    user_books_repo.clear_status_tag("u3", book.id)
    counters = recomputer.recompute_now(book.id).counters()

    assert counters["rating_count"] == 1
    assert counters["rating_sum"] == 4.0
    assert counters["review_count"] == 0
    assert counters["reads_count"] == 0


def test_recompute_for_missing_book_writes_nothing(recomputer):
    assert recomputer.recompute_now(999) is None
    assert book_stats_repo.get_stats(999) is None


def test_get_book_stats_reports_zeros_before_first_recompute():
    book = books_repo.upsert_book("OL2W", {"title": "Fresh"})

    stats = get_book_stats(book.id)

    assert stats["rating_count"] == 0
    assert stats["reads_count"] == 0
    assert stats["average_rating"] is None


def test_refreshes_during_a_run_collapse_into_one_rerun(monkeypatch):
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow_recompute(book_id):
        calls.append(book_id)
        started.set()
        release.wait(5.0)

    monkeypatch.setattr(book_stats_repo, "recompute_stats", slow_recompute)
    recomputer = StatsRecomputer(worker_cap=2)
    try:
        recomputer.refresh(7)
        assert started.wait(2.0)
        for _ in range(5):
            recomputer.refresh(7)
        release.set()
        assert recomputer.wait_idle(5.0)
    finally:
        recomputer.shutdown(2.0)

    assert calls == [7, 7]
    assert recomputer.runs == 2


def test_worker_cap_bounds_concurrent_recomputes(monkeypatch):
    lock = threading.Lock()
    active = {"now": 0, "peak": 0}
    seen = []

    def tracked(book_id):
        with lock:
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            seen.append(book_id)
        time.sleep(0.05)
        with lock:
            active["now"] -= 1

    monkeypatch.setattr(book_stats_repo, "recompute_stats", tracked)
    recomputer = StatsRecomputer(worker_cap=2)
    try:
        for book_id in range(1, 7):
            recomputer.refresh(book_id)
        assert recomputer.wait_idle(5.0)
    finally:
        recomputer.shutdown(2.0)

    assert sorted(seen) == [1, 2, 3, 4, 5, 6]
    assert active["peak"] <= 2


def test_failed_recompute_is_contained(monkeypatch):
    def broken(book_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(book_stats_repo, "recompute_stats", broken)
    recomputer = StatsRecomputer(worker_cap=1)
    try:
        recomputer.refresh(3)
        assert recomputer.wait_idle(5.0)
    finally:
        recomputer.shutdown(2.0)

    assert recomputer.runs == 1
    assert recomputer.in_flight() == 0


def test_backfill_schedules_every_mirrored_book(recomputer):
    for n in range(3):
        books_repo.upsert_book(f"OL{n}W", {"title": f"Book {n}"})

    assert recomputer.backfill_all() == 3
    assert recomputer.wait_idle(5.0)

    for book_id in books_repo.list_book_ids():
        assert book_stats_repo.get_stats(book_id) is not None


def test_refresh_after_shutdown_is_ignored(monkeypatch):
    calls = []
    monkeypatch.setattr(book_stats_repo, "recompute_stats", lambda book_id: calls.append(book_id))
    recomputer = StatsRecomputer(worker_cap=1)
    assert recomputer.shutdown(1.0)

    recomputer.refresh(1)

    assert calls == []
    assert recomputer.in_flight() == 0
