"""Shared fixtures: an in-memory datastore and a scripted catalog."""
import copy
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest

from shelfkeeper.errors import ConflictError, NotFoundError, UpstreamUnavailableError
from shelfkeeper.models import RatingAggregate


class Clock:
    """Settable UTC clock."""

    def __init__(self, now=None):
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeUnitOfWork:
    """Same statements as shelfkeeper.database.UnitOfWork, against dicts."""

    def __init__(self, state, clock):
        self.state = state
        self.clock = clock

    def _book(self, book_id):
        stored = self.state["books"].get(book_id)
        if stored is None:
            return None
        book = copy.deepcopy(stored)
        book.alternative_ids = [
            i for i in self.state["aliases"][book_id] if i != book.external_id
        ]
        aggregate = self.state["ratings"][book_id]
        book.rating_count = aggregate.count
        book.average_rating = aggregate.average
        return book

    def find_book_by_identifier(self, external_id):
        book_id = self.state["identifiers"].get(external_id)
        return self._book(book_id) if book_id is not None else None

    def get_book(self, book_id):
        return self._book(book_id)

    def find_books_by_title(self, title, authors, require_all):
        found = []
        for book_id in sorted(self.state["books"]):
            book = self.state["books"][book_id]
            if book.title.lower() != title.lower():
                continue
            present = [a in book.authors for a in authors]
            if (all(present) if require_all else any(present)):
                found.append(self._book(book_id))
        return found

    def find_books_by_any_author(self, authors):
        return [
            self._book(book_id)
            for book_id in sorted(self.state["books"])
            if set(authors) & set(self.state["books"][book_id].authors)
        ]

    def insert_book(self, book):
        for identifier in book.identifiers:
            if identifier in self.state["identifiers"]:
                raise ConflictError(f"An identifier of {book.external_id} already belongs to another book")
        self.state["next_book_id"] += 1
        book_id = self.state["next_book_id"]
        stored = copy.deepcopy(book)
        stored.id = book_id
        stored.alternative_ids = []
        stored.created_at = stored.updated_at = self.clock()
        self.state["books"][book_id] = stored
        self.state["aliases"][book_id] = []
        self.state["ratings"][book_id] = RatingAggregate()
        for identifier in book.identifiers:
            self.state["identifiers"][identifier] = book_id
            self.state["aliases"][book_id].append(identifier)
        self.state["writes"].append(("insert", book_id))
        return self._book(book_id)

    def update_book(self, book, refreshed=True):
        stored = self.state["books"][book.id]
        for name in ("title", "subtitle", "description", "cover_image", "cover_id", "release_date"):
            setattr(stored, name, getattr(book, name))
        stored.authors = list(book.authors)
        stored.genres = list(book.genres)
        if refreshed:
            stored.updated_at = self.clock()
        for identifier in book.identifiers:
            if identifier not in self.state["identifiers"]:
                self.state["identifiers"][identifier] = book.id
                self.state["aliases"][book.id].append(identifier)
        self.state["writes"].append(("update", book.id))
        return self._book(book.id)

    def touch_book(self, book_id):
        self.state["books"][book_id].updated_at = self.clock()
        self.state["writes"].append(("touch", book_id))
        return self.clock()

    def lock_rating(self, book_id):
        if book_id not in self.state["books"]:
            return None
        return self.state["ratings"][book_id]

    def set_rating(self, book_id, aggregate):
        self.state["ratings"][book_id] = aggregate

    def insert_review(self, review):
        for existing in self.state["reviews"].values():
            if existing.user_id == review.user_id and existing.book_id == review.book_id:
                raise ConflictError("You have already reviewed this book")
        self.state["next_review_id"] += 1
        stored = copy.deepcopy(review)
        stored.id = self.state["next_review_id"]
        stored.created_at = stored.updated_at = self.clock()
        self.state["reviews"][stored.id] = stored
        return copy.deepcopy(stored)

    def get_review(self, review_id, for_update=False):
        review = self.state["reviews"].get(review_id)
        return copy.deepcopy(review) if review else None

    def update_review(self, review):
        stored = self.state["reviews"][review.id]
        stored.content = review.content
        stored.rating = review.rating
        stored.updated_at = self.clock()
        return copy.deepcopy(stored)

    def delete_review(self, review_id):
        return self.state["reviews"].pop(review_id, None) is not None

    def list_reviews(self, book_id, limit, offset):
        reviews = [r for r in self.state["reviews"].values() if r.book_id == book_id]
        reviews.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return [copy.deepcopy(r) for r in reviews[offset:offset + limit]]

    def stats(self):
        return {
            "total_books": len(self.state["books"]),
            "total_identifiers": len(self.state["identifiers"]),
            "total_reviews": len(self.state["reviews"]),
        }


class FakeDatabase:
    """
    In-memory stand-in for shelfkeeper.database.Database.

    Transactions are serialized by one lock and roll back to a snapshot on
    any exception, which matches what the row locks and constraints give
    the real store for the operations under test.
    """

    def __init__(self, clock=None):
        self.clock = clock or Clock()
        self.lock = threading.RLock()
        self.state = {
            "books": {},
            "aliases": {},
            "identifiers": {},
            "ratings": {},
            "reviews": {},
            "next_book_id": 0,
            "next_review_id": 0,
            "writes": [],
        }
        self.transactions = 0

    @contextmanager
    def transaction(self):
        with self.lock:
            self.transactions += 1
            snapshot = copy.deepcopy(self.state)
            try:
                yield FakeUnitOfWork(self.state, self.clock)
            except BaseException:
                self.state.clear()
                self.state.update(snapshot)
                raise

    def _run(self, name, *args, **kwargs):
        with self.transaction() as uow:
            return getattr(uow, name)(*args, **kwargs)

    def find_book_by_identifier(self, external_id):
        return self._run("find_book_by_identifier", external_id)

    def get_book(self, book_id):
        return self._run("get_book", book_id)

    def find_books_by_title(self, title, authors, require_all):
        return self._run("find_books_by_title", title, authors, require_all)

    def find_books_by_any_author(self, authors):
        return self._run("find_books_by_any_author", authors)

    def create_book(self, book):
        return self._run("insert_book", book)

    def save_book(self, book, refreshed=True):
        return self._run("update_book", book, refreshed)

    def touch_book(self, book_id):
        return self._run("touch_book", book_id)

    def get_review(self, review_id):
        return self._run("get_review", review_id)

    def list_reviews(self, book_id, limit=10, offset=0):
        return self._run("list_reviews", book_id, limit, offset)

    def get_stats(self):
        return self._run("stats")

    @property
    def writes(self):
        return self.state["writes"]

    def set_rating(self, book_id, total, count):
        self.state["ratings"][book_id] = RatingAggregate(total, count)


class FakeCatalog:
    """Catalog returning scripted work documents and counting fetches."""

    def __init__(self, works=None):
        self.works = dict(works or {})
        self.calls = []
        self.unavailable = False

    def fetch_work(self, external_id):
        self.calls.append(external_id)
        if self.unavailable:
            raise UpstreamUnavailableError(f"Open Library is unavailable, could not fetch {external_id}")
        if external_id not in self.works:
            raise NotFoundError(f"Book {external_id} not found in Open Library")
        return copy.deepcopy(self.works[external_id])


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def db(clock):
    return FakeDatabase(clock)


@pytest.fixture
def catalog():
    return FakeCatalog({
        "OL1W": {
            "key": "/works/OL1W",
            "title": "Dune",
            "description": {"type": "/type/text", "value": "A desert planet."},
            "covers": [101],
            "subjects": ["Science Fiction"],
            "first_publish_date": "1965",
        },
    })
