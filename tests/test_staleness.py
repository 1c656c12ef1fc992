"""Tests for the refresh decision."""
from datetime import datetime, timedelta, timezone

from shelfkeeper.models import Book
from shelfkeeper.staleness import is_stale, needs_refresh

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def make_book(updated_at=NOW, alternative_ids=None):
    return Book(
        external_id="OL1W",
        title="Dune",
        alternative_ids=alternative_ids or [],
        updated_at=updated_at,
    )


def test_no_book_needs_refresh():
    assert needs_refresh(None, "OL1W", NOW)


def test_fresh_book_with_known_id():
    """Test that a fresh record for a linked id is served as is."""
    assert not needs_refresh(make_book(NOW - timedelta(days=6)), "OL1W", NOW)
    assert not needs_refresh(make_book(alternative_ids=["OL2W"]), "OL2W", NOW)


def test_stale_book():
    book = make_book(NOW - timedelta(days=7, seconds=1))
    assert needs_refresh(book, "OL1W", NOW)


def test_exactly_seven_days_is_not_stale():
    assert not is_stale(make_book(NOW - timedelta(days=7)), NOW)


def test_new_alias_forces_refresh_even_when_fresh():
    """Test that an unseen id triggers enrichment and linking."""
    assert needs_refresh(make_book(NOW), "OL2W", NOW)


def test_missing_timestamp_is_stale():
    assert is_stale(make_book(updated_at=None), NOW)


def test_custom_window():
    book = make_book(NOW - timedelta(hours=2))
    assert needs_refresh(book, "OL1W", NOW, stale_after=timedelta(hours=1))
