"""Data models for books, reviews and the requests that touch them."""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Dict, Any


@dataclass
class CandidateBook:
    """Book attributes as normalized from one catalog record."""
    external_id: str
    title: str
    authors: List[str] = field(default_factory=list)
    subtitle: Optional[str] = None
    genres: List[str] = field(default_factory=list)
    description: Optional[str] = None
    cover_image: Optional[str] = None
    cover_id: Optional[int] = None
    release_date: Optional[str] = None


@dataclass
class Book:
    """Canonical record for one logical work."""
    external_id: str
    title: str
    authors: List[str] = field(default_factory=list)
    alternative_ids: List[str] = field(default_factory=list)
    subtitle: Optional[str] = None
    genres: List[str] = field(default_factory=list)
    description: Optional[str] = None
    cover_image: Optional[str] = None
    cover_id: Optional[int] = None
    release_date: Optional[str] = None
    average_rating: Decimal = Decimal("0.0")
    rating_count: int = 0
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def identifiers(self) -> List[str]:
        """Primary identifier followed by the alternatives."""
        return [self.external_id] + [i for i in self.alternative_ids if i != self.external_id]

    def has_identifier(self, external_id: str) -> bool:
        return external_id == self.external_id or external_id in self.alternative_ids

    @property
    def authors_str(self) -> str:
        """Format authors as comma-separated string."""
        return ", ".join(self.authors) if self.authors else "Unknown"

    @property
    def genres_str(self) -> str:
        """Format genres as comma-separated string."""
        return ", ".join(self.genres) if self.genres else "None"


RATING_QUANTUM = Decimal("0.1")


@dataclass(frozen=True)
class RatingAggregate:
    """
    Running rating summary of one book.

    The integer total is kept next to the count so the unrounded mean is
    always exact; rounding happens only in ``average``, which is what gets
    persisted.
    """
    total: int = 0
    count: int = 0

    @property
    def average(self) -> Decimal:
        if self.count <= 0:
            return Decimal("0.0")
        return (Decimal(self.total) / Decimal(self.count)).quantize(RATING_QUANTUM, rounding=ROUND_HALF_UP)

    def added(self, rating: int) -> "RatingAggregate":
        return RatingAggregate(self.total + rating, self.count + 1)

    def removed(self, rating: int) -> "RatingAggregate":
        count = max(self.count - 1, 0)
        if count == 0:
            return RatingAggregate(0, 0)
        return RatingAggregate(self.total - rating, count)

    def replaced(self, old_rating: int, new_rating: int) -> "RatingAggregate":
        if self.count <= 0:
            return self
        return RatingAggregate(self.total - old_rating + new_rating, self.count)


@dataclass
class Review:
    """One user's opinion of one book."""
    user_id: str
    book_id: int
    rating: int
    content: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _check_rating(rating):
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValueError(f"rating must be an integer between 1 and 5, got {rating!r}")


def _check_id(name, value):
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")


@dataclass
class ResolveRequest:
    """Input of a book resolution."""
    external_id: str
    title: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    hints: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        _check_id("external_id", self.external_id)
        self.external_id = self.external_id.strip()
        if isinstance(self.authors, str):
            self.authors = [self.authors]
        self.authors = [a for a in self.authors if a and a.strip()]


@dataclass
class AddReviewRequest:
    user_id: str
    book_id: int
    rating: int
    content: Optional[str] = None

    def __post_init__(self):
        _check_id("user_id", self.user_id)
        _check_rating(self.rating)


@dataclass
class UpdateReviewRequest:
    user_id: str
    review_id: int
    content: Optional[str] = None
    rating: Optional[int] = None

    def __post_init__(self):
        _check_id("user_id", self.user_id)
        if self.rating is not None:
            _check_rating(self.rating)


@dataclass
class RemoveReviewRequest:
    user_id: str
    review_id: int
    role: str = "user"

    def __post_init__(self):
        _check_id("user_id", self.user_id)
