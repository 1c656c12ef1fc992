"""Resolve external catalog identifiers to canonical local book records."""
import logging
from datetime import timedelta
from typing import Optional, List, Dict, Any

from shelfkeeper.enrichment import merge_book
from shelfkeeper.errors import ConflictError, NotFoundError, UpstreamUnavailableError
from shelfkeeper.matching import has_common_authors, titles_overlap
from shelfkeeper.models import Book, CandidateBook, ResolveRequest
from shelfkeeper.parse import normalize_work, candidate_from_hints
from shelfkeeper.staleness import DEFAULT_STALE_AFTER, needs_refresh, utcnow

logger = logging.getLogger(__name__)


def find_by_title_and_authors(db, title: str, authors: List[str]) -> Optional[Book]:
    """
    Find the same work stored under another identifier.

    The catalog gives each edition or translation its own id, so an id
    miss does not mean the work is new. Tiers, first hit wins:

    1. exact title (case-insensitive) listing every given author
    2. exact title listing at least one given author, confirmed by the
       normalized author overlap check
    3. normalized titles containing one another, among all books that
       share an author, confirmed by the same check
    """
    for book in db.find_books_by_title(title, authors, require_all=True):
        return book

    for book in db.find_books_by_title(title, authors, require_all=False):
        if has_common_authors(book.authors, authors):
            return book

    for book in db.find_books_by_any_author(authors):
        if titles_overlap(book.title, title) and has_common_authors(book.authors, authors):
            return book

    return None


class BookResolver:
    """
    Turns an external identifier into exactly one local Book.

    Stateless apart from its collaborators: a datastore handle and a
    catalog exposing fetch_work(external_id).
    """

    def __init__(self, db, catalog, stale_after: timedelta = DEFAULT_STALE_AFTER, clock=utcnow):
        self.db = db
        self.catalog = catalog
        self.stale_after = stale_after
        self.clock = clock

    def find_existing(self, external_id: str, title: Optional[str], authors: List[str]) -> Optional[Book]:
        book = self.db.find_book_by_identifier(external_id)
        if book is None and title and authors:
            book = find_by_title_and_authors(self.db, title, authors)
            if book is not None:
                logger.info(f"{external_id} matched book {book.external_id} by title and authors")
        return book

    def resolve(
        self,
        external_id: str,
        title: Optional[str] = None,
        authors: Optional[List[str]] = None,
        hints: Optional[Dict[str, Any]] = None
    ) -> Book:
        """
        Return the canonical Book for external_id, creating it if needed.

        Args:
            external_id: Catalog work id
            title: Title as the caller knows it, enables fuzzy matching
            authors: Author names as the caller knows them
            hints: Extra attributes used where the catalog record is silent

        Returns:
            The persisted Book, never None

        Raises:
            NotFoundError: unknown to both the catalog and the local store
            UpstreamUnavailableError: catalog down and nothing local to return
        """
        request = ResolveRequest(external_id, title, authors or [], hints or {})
        external_id = request.external_id
        hints = dict(request.hints)
        hints.setdefault("title", request.title)
        hints.setdefault("authors", request.authors)

        book = self.find_existing(external_id, request.title, request.authors)

        if not needs_refresh(book, external_id, self.clock(), self.stale_after):
            return book

        try:
            raw = self.catalog.fetch_work(external_id)
        except NotFoundError:
            if book is None:
                raise
            # An id the catalog does not know is never linked
            logger.warning(f"Catalog does not know {external_id}, serving local copy")
            return book
        except UpstreamUnavailableError as e:
            if book is None:
                raise
            logger.warning(f"Catalog fetch for {external_id} failed ({e.message}), serving local copy")
            return self._link_without_refresh(book, external_id, hints)

        candidate = normalize_work(raw, hints, external_id=external_id)

        if book is None and candidate.external_id != external_id:
            # The catalog answered with another canonical id we may already hold
            book = self.db.find_book_by_identifier(candidate.external_id)

        if book is None:
            return self._create(candidate, external_id)
        return self._enrich(book, candidate, external_id)

    def _enrich(self, book: Book, candidate: CandidateBook, external_id: str) -> Book:
        merged, dirty = merge_book(book, candidate, external_id)
        if dirty:
            return self.db.save_book(merged, refreshed=True)
        merged.updated_at = self.db.touch_book(book.id) or merged.updated_at
        return merged

    def _link_without_refresh(self, book: Book, external_id: str, hints: Dict[str, Any]) -> Book:
        # Nothing was fetched, so the staleness clock stays where it is
        merged, dirty = merge_book(book, candidate_from_hints(external_id, hints), external_id)
        if not dirty:
            return book
        return self.db.save_book(merged, refreshed=False)

    def _create(self, candidate: CandidateBook, external_id: str) -> Book:
        new_book, _ = merge_book(None, candidate, external_id)
        try:
            created = self.db.create_book(new_book)
            logger.info(f"Created book {created.external_id} for {external_id}")
            return created
        except ConflictError:
            # A concurrent resolution claimed one of the identifiers first
            winner = (
                self.db.find_book_by_identifier(external_id)
                or self.db.find_book_by_identifier(candidate.external_id)
            )
            if winner is None:
                raise
            logger.info(f"Lost creation race for {external_id}, using book {winner.external_id}")
            return self._enrich(winner, candidate, external_id)


def resolve_book(db, catalog, external_id: str, title: Optional[str] = None,
                 authors: Optional[List[str]] = None, hints: Optional[Dict[str, Any]] = None,
                 stale_after: timedelta = DEFAULT_STALE_AFTER) -> Book:
    """Functional entry point; see BookResolver.resolve."""
    return BookResolver(db, catalog, stale_after).resolve(external_id, title, authors, hints)
