"""Merge freshly normalized catalog data into local book records."""
import dataclasses
import logging
from typing import Optional, Tuple

from shelfkeeper.matching import merge_authors, merge_genres
from shelfkeeper.models import Book, CandidateBook

logger = logging.getLogger(__name__)


def book_from_candidate(candidate: CandidateBook, external_id: str) -> Book:
    """New record from a candidate; the queried id becomes an alias if it differs."""
    alternative_ids = [] if candidate.external_id == external_id else [external_id]
    return Book(
        external_id=candidate.external_id,
        title=candidate.title,
        authors=list(candidate.authors),
        alternative_ids=alternative_ids,
        subtitle=candidate.subtitle,
        genres=list(candidate.genres),
        description=candidate.description,
        cover_image=candidate.cover_image,
        cover_id=candidate.cover_id,
        release_date=candidate.release_date
    )


def merge_book(
    existing: Optional[Book],
    candidate: CandidateBook,
    external_id: str
) -> Tuple[Book, bool]:
    """
    Combine an existing record with a candidate without regressing any field.

    Rules, each applied independently:
        description   replaced only by a strictly longer non-empty one
        cover         filled only when missing (cover_id travels with it)
        subtitle      filled only when missing
        release date  filled only when missing
        authors       union, normalized overlap counts as already present
        genres        union, case and whitespace insensitive
        external_id   linked as an alternative id when not yet known

    Args:
        existing: Local record, or None when the book is new
        candidate: Normalized catalog data
        external_id: The id that was resolved

    Returns:
        (book, dirty). The input record is never mutated. For a new book
        dirty is always True.
    """
    if existing is None:
        return book_from_candidate(candidate, external_id), True

    book = dataclasses.replace(
        existing,
        authors=list(existing.authors),
        alternative_ids=list(existing.alternative_ids),
        genres=list(existing.genres)
    )
    dirty = False

    new_desc = candidate.description or ""
    if new_desc and len(new_desc) > len(book.description or ""):
        book.description = new_desc
        dirty = True

    if not book.cover_image and candidate.cover_image:
        book.cover_image = candidate.cover_image
        book.cover_id = candidate.cover_id
        dirty = True

    if not book.subtitle and candidate.subtitle:
        book.subtitle = candidate.subtitle
        dirty = True

    if not book.release_date and candidate.release_date:
        book.release_date = candidate.release_date
        dirty = True

    if candidate.authors:
        merged = merge_authors(book.authors, candidate.authors)
        if len(merged) > len(book.authors):
            book.authors = merged
            dirty = True

    if candidate.genres:
        merged = merge_genres(book.genres, candidate.genres)
        if len(merged) > len(book.genres):
            book.genres = merged
            dirty = True

    if not book.has_identifier(external_id):
        book.alternative_ids.append(external_id)
        dirty = True

    if dirty:
        logger.info(f"Enriched book {book.external_id} from {external_id}")
    return book, dirty
