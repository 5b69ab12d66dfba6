"""Identifier helpers: key prefixes, ISBN normalisation and cover URLs."""
from __future__ import annotations

import pytest

from olbridge.utils import keys


def test_work_and_author_prefixes_are_stripped_once():
    assert keys.strip_work_key("/works/OL1W") == "OL1W"
    assert keys.strip_work_key("OL1W") == "OL1W"
    assert keys.strip_work_key("/works/") is None
    assert keys.strip_author_key("/authors/OL9A") == "OL9A"
    assert keys.strip_author_key(None) is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("978-0-441-01359-3", "9780441013593"),
        ('="9780441013593"', "9780441013593"),
        ("0-14-032872-x", "014032872X"),
        ("12345", None),
        ("97804410135", None),
        (None, None),
    ],
)
def test_normalize_isbn(raw, expected):
    assert keys.normalize_isbn(raw) == expected


def test_isbn10_converts_to_isbn13():
    assert keys.to_isbn13("014032872X") == "9780140328721"
    assert keys.to_isbn13("9780441013593") == "9780441013593"


def test_cover_urls_ignore_unusable_ids():
    assert keys.cover_url(42, "S") == "https://covers.openlibrary.org/b/id/42-S.jpg"
    assert keys.cover_url(-1) == ""
    assert keys.cover_url(True) == ""
    assert keys.first_cover_url([-1, None, 7], "L") == "https://covers.openlibrary.org/b/id/7-L.jpg"
    with pytest.raises(ValueError):
        keys.cover_url(1, "XL")


def test_text_value_accepts_string_or_value_object():
    assert keys.text_value("plain") == "plain"
    assert keys.text_value({"type": "/type/text", "value": "typed"}) == "typed"
    assert keys.text_value({"type": "/type/text"}) is None
    assert keys.text_value(3) is None
