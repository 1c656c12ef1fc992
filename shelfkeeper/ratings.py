"""Review mutations and the book rating aggregate they maintain."""
import logging
from typing import Optional, List, Iterable

from shelfkeeper.errors import ForbiddenError, NotFoundError
from shelfkeeper.models import (
    AddReviewRequest,
    RatingAggregate,
    RemoveReviewRequest,
    Review,
    UpdateReviewRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_PRIVILEGED_ROLES = frozenset({"admin", "librarian"})


def on_review_created(uow, book_id: int, rating: int) -> RatingAggregate:
    """Fold a new rating into the book's aggregate inside uow's transaction."""
    current = _locked(uow, book_id)
    updated = current.added(rating)
    uow.set_rating(book_id, updated)
    return updated


def on_review_deleted(uow, book_id: int, rating: int) -> RatingAggregate:
    current = uow.lock_rating(book_id)
    if current is None:
        # Book already gone, nothing left to keep consistent
        return RatingAggregate()
    updated = current.removed(rating)
    uow.set_rating(book_id, updated)
    return updated


def on_review_rating_changed(uow, book_id: int, old_rating: int, new_rating: int) -> RatingAggregate:
    current = _locked(uow, book_id)
    if current.count == 0:
        logger.warning(f"Book {book_id} has a review but a zero rating count, leaving aggregate as is")
        return current
    updated = current.replaced(old_rating, new_rating)
    uow.set_rating(book_id, updated)
    return updated


def _locked(uow, book_id: int) -> RatingAggregate:
    current = uow.lock_rating(book_id)
    if current is None:
        raise NotFoundError("Book not found")
    return current


class ReviewService:
    """
    Creates, edits and removes reviews.

    Each mutation runs in a single transaction with the aggregate update
    on the book row, which is locked for the duration, so concurrent
    mutations of one book's reviews apply one after another.
    """

    def __init__(self, db, privileged_roles: Iterable[str] = DEFAULT_PRIVILEGED_ROLES):
        self.db = db
        self.privileged_roles = frozenset(privileged_roles)

    def add_review(self, user_id: str, book_id: int, rating: int, content: Optional[str] = None) -> Review:
        """
        Raises:
            NotFoundError: no such book
            ConflictError: the user already reviewed this book
        """
        request = AddReviewRequest(user_id, book_id, rating, content)

        with self.db.transaction() as uow:
            aggregate = on_review_created(uow, request.book_id, request.rating)
            review = uow.insert_review(Review(
                user_id=request.user_id,
                book_id=request.book_id,
                rating=request.rating,
                content=request.content
            ))

        logger.info(
            f"User {user_id} reviewed book {book_id}: "
            f"{aggregate.count} ratings, average {aggregate.average}"
        )
        return review

    def update_review(
        self,
        user_id: str,
        review_id: int,
        content: Optional[str] = None,
        rating: Optional[int] = None
    ) -> Review:
        """
        Edit the caller's own review. Other users' reviews look missing.

        Raises:
            NotFoundError: no such review owned by user_id
        """
        request = UpdateReviewRequest(user_id, review_id, content, rating)

        existing = self.db.get_review(request.review_id)
        if existing is None or existing.user_id != request.user_id:
            raise NotFoundError("Review not found or you are not the owner")

        with self.db.transaction() as uow:
            # Book row first, then the review: same lock order as add_review
            uow.lock_rating(existing.book_id)
            review = uow.get_review(request.review_id, for_update=True)
            if review is None:
                raise NotFoundError("Review not found or you are not the owner")

            old_rating = review.rating
            if request.content:
                review.content = request.content
            if request.rating is not None:
                review.rating = request.rating

            if review.rating != old_rating:
                on_review_rating_changed(uow, review.book_id, old_rating, review.rating)
            review = uow.update_review(review)

        return review

    def remove_review(self, user_id: str, review_id: int, role: str = "user") -> None:
        """
        Delete a review as its owner or as a privileged role.

        Raises:
            NotFoundError: no such review
            ForbiddenError: caller is neither owner nor privileged
        """
        request = RemoveReviewRequest(user_id, review_id, role)

        existing = self.db.get_review(request.review_id)
        if existing is None:
            raise NotFoundError("Review not found")

        is_owner = existing.user_id == request.user_id
        if not is_owner and request.role not in self.privileged_roles:
            raise ForbiddenError("You are not authorized to delete this review")

        with self.db.transaction() as uow:
            uow.lock_rating(existing.book_id)
            review = uow.get_review(request.review_id, for_update=True)
            if review is None or not uow.delete_review(review.id):
                raise NotFoundError("Review not found")
            on_review_deleted(uow, review.book_id, review.rating)

        logger.info(f"Review {review_id} of book {existing.book_id} removed by {user_id}")

    def list_reviews(self, book_id: int, page: int = 1, limit: int = 10) -> List[Review]:
        """Reviews of a book, newest first."""
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")
        if self.db.get_book(book_id) is None:
            raise NotFoundError("Book not found")
        return self.db.list_reviews(book_id, limit=limit, offset=(page - 1) * limit)
