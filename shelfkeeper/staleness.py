"""Decide when a cached book must be re-fetched from the catalog."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from shelfkeeper.models import Book

DEFAULT_STALE_AFTER = timedelta(days=7)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_stale(book: Book, now: Optional[datetime] = None, stale_after: timedelta = DEFAULT_STALE_AFTER) -> bool:
    """A book with no refresh time on record is always stale."""
    if book.updated_at is None:
        return True
    now = now or utcnow()
    return now - book.updated_at > stale_after


def needs_refresh(
    book: Optional[Book],
    external_id: str,
    now: Optional[datetime] = None,
    stale_after: timedelta = DEFAULT_STALE_AFTER
) -> bool:
    """
    Whether the catalog must be consulted for this resolution.

    Args:
        book: Local record found for the request, if any
        external_id: The id being resolved
        now: Current time (UTC aware)
        stale_after: Staleness window

    Returns:
        True when there is no book, when it is older than the window,
        or when external_id is a new alias of it
    """
    if book is None:
        return True
    if not book.has_identifier(external_id):
        return True
    return is_stale(book, now, stale_after)
