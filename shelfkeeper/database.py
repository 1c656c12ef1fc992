"""Database layer for books, their identifiers and reviews."""
import psycopg2
from psycopg2 import errors, pool
from contextlib import contextmanager
from typing import Optional, List, Dict, Any, Iterator
import logging

from shelfkeeper.errors import ConflictError, InternalError, ShelfkeeperError
from shelfkeeper.models import Book, Review, RatingAggregate

logger = logging.getLogger(__name__)

BOOK_COLUMNS = """
    b.id, b.external_id, b.title, b.subtitle, b.authors, b.genres,
    b.description, b.cover_image, b.cover_id, b.release_date,
    b.average_rating, b.rating_count, b.created_at, b.updated_at,
    ARRAY(
        SELECT i.external_id FROM book_identifiers i
        WHERE i.book_id = b.id AND i.external_id <> b.external_id
        ORDER BY i.linked_at, i.external_id
    ) AS alternative_ids
"""

REVIEW_COLUMNS = "id, user_id, book_id, content, rating, created_at, updated_at"


def book_from_row(row) -> Book:
    """Build a Book from a row selected with BOOK_COLUMNS."""
    (book_id, external_id, title, subtitle, authors, genres, description,
     cover_image, cover_id, release_date, average_rating, rating_count,
     created_at, updated_at, alternative_ids) = row
    return Book(
        id=book_id,
        external_id=external_id,
        title=title,
        subtitle=subtitle,
        authors=list(authors or []),
        genres=list(genres or []),
        description=description,
        cover_image=cover_image,
        cover_id=cover_id,
        release_date=release_date,
        average_rating=average_rating,
        rating_count=rating_count,
        created_at=created_at,
        updated_at=updated_at,
        alternative_ids=list(alternative_ids or [])
    )


def review_from_row(row) -> Review:
    review_id, user_id, book_id, content, rating, created_at, updated_at = row
    return Review(
        id=review_id,
        user_id=user_id,
        book_id=book_id,
        content=content,
        rating=rating,
        created_at=created_at,
        updated_at=updated_at
    )


class UnitOfWork:
    """
    Statements that run inside one datastore transaction.

    Obtained from Database.transaction(); commit or rollback is decided by
    the context manager, never here.
    """

    def __init__(self, cursor):
        self.cur = cursor

    # Books

    def find_book_by_identifier(self, external_id: str) -> Optional[Book]:
        """Book whose primary or alternative identifier is external_id, in one query."""
        self.cur.execute(f"""
            SELECT {BOOK_COLUMNS}
            FROM books b
            JOIN book_identifiers bi ON bi.book_id = b.id
            WHERE bi.external_id = %s
        """, (external_id,))
        row = self.cur.fetchone()
        return book_from_row(row) if row else None

    def get_book(self, book_id: int) -> Optional[Book]:
        self.cur.execute(f"SELECT {BOOK_COLUMNS} FROM books b WHERE b.id = %s", (book_id,))
        row = self.cur.fetchone()
        return book_from_row(row) if row else None

    def find_books_by_title(self, title: str, authors: List[str], require_all: bool) -> List[Book]:
        """
        Books whose title equals title case-insensitively and that list
        all (require_all) or any of the given authors.
        """
        operator = "@>" if require_all else "&&"
        self.cur.execute(f"""
            SELECT {BOOK_COLUMNS}
            FROM books b
            WHERE lower(b.title) = lower(%s) AND b.authors {operator} %s::text[]
            ORDER BY b.id
        """, (title, list(authors)))
        return [book_from_row(row) for row in self.cur.fetchall()]

    def find_books_by_any_author(self, authors: List[str]) -> List[Book]:
        self.cur.execute(f"""
            SELECT {BOOK_COLUMNS}
            FROM books b
            WHERE b.authors && %s::text[]
            ORDER BY b.id
        """, (list(authors),))
        return [book_from_row(row) for row in self.cur.fetchall()]

    def insert_book(self, book: Book) -> Book:
        """
        Insert a new book and claim all of its identifiers.

        Raises:
            ConflictError: one of the identifiers already belongs to a book
        """
        try:
            self.cur.execute("""
                INSERT INTO books (
                    external_id, title, subtitle, authors, genres, description,
                    cover_image, cover_id, release_date
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
            """, (
                book.external_id, book.title, book.subtitle, book.authors,
                book.genres, book.description, book.cover_image, book.cover_id,
                book.release_date
            ))
            book_id = self.cur.fetchone()[0]
            for identifier in book.identifiers:
                self.cur.execute("""
                    INSERT INTO book_identifiers (external_id, book_id)
                    VALUES (%s, %s)
                """, (identifier, book_id))
        except errors.UniqueViolation as e:
            raise ConflictError(
                f"An identifier of {book.external_id} already belongs to another book"
            ) from e

        return self.get_book(book_id)

    def update_book(self, book: Book, refreshed: bool = True) -> Book:
        """
        Rewrite the full record and link any new alternative identifiers.

        Identifiers already claimed by another book are left with that book.
        updated_at only moves when refreshed is True.
        """
        self.cur.execute("""
            UPDATE books SET
                title = %s, subtitle = %s, authors = %s, genres = %s,
                description = %s, cover_image = %s, cover_id = %s,
                release_date = %s,
                updated_at = CASE WHEN %s THEN now() ELSE updated_at END
            WHERE id = %s
        """, (
            book.title, book.subtitle, book.authors, book.genres,
            book.description, book.cover_image, book.cover_id,
            book.release_date, refreshed, book.id
        ))

        for identifier in book.identifiers:
            self.cur.execute("""
                INSERT INTO book_identifiers (external_id, book_id)
                VALUES (%s, %s)
                ON CONFLICT (external_id) DO NOTHING
            """, (identifier, book.id))
            if self.cur.rowcount == 0:
                self.cur.execute(
                    "SELECT book_id FROM book_identifiers WHERE external_id = %s",
                    (identifier,)
                )
                owner = self.cur.fetchone()
                if owner and owner[0] != book.id:
                    logger.warning(
                        f"Identifier {identifier} already belongs to book {owner[0]}, "
                        f"not linking it to book {book.id}"
                    )

        return self.get_book(book.id)

    def touch_book(self, book_id: int):
        """Reset the staleness clock without rewriting the record."""
        self.cur.execute(
            "UPDATE books SET updated_at = now() WHERE id = %s RETURNING updated_at",
            (book_id,)
        )
        row = self.cur.fetchone()
        return row[0] if row else None

    # Rating aggregate

    def lock_rating(self, book_id: int) -> Optional[RatingAggregate]:
        """Read the aggregate and hold the book row until the transaction ends."""
        self.cur.execute(
            "SELECT rating_total, rating_count FROM books WHERE id = %s FOR UPDATE",
            (book_id,)
        )
        row = self.cur.fetchone()
        return RatingAggregate(total=row[0], count=row[1]) if row else None

    def set_rating(self, book_id: int, aggregate: RatingAggregate):
        self.cur.execute("""
            UPDATE books
            SET rating_total = %s, rating_count = %s, average_rating = %s
            WHERE id = %s
        """, (aggregate.total, aggregate.count, aggregate.average, book_id))

    # Reviews

    def insert_review(self, review: Review) -> Review:
        """
        Raises:
            ConflictError: the user already reviewed the book
        """
        try:
            self.cur.execute(f"""
                INSERT INTO reviews (user_id, book_id, content, rating)
                VALUES (%s, %s, %s, %s)
                RETURNING {REVIEW_COLUMNS}
            """, (review.user_id, review.book_id, review.content, review.rating))
        except errors.UniqueViolation as e:
            raise ConflictError("You have already reviewed this book") from e
        return review_from_row(self.cur.fetchone())

    def get_review(self, review_id: int, for_update: bool = False) -> Optional[Review]:
        lock = " FOR UPDATE" if for_update else ""
        self.cur.execute(
            f"SELECT {REVIEW_COLUMNS} FROM reviews WHERE id = %s{lock}",
            (review_id,)
        )
        row = self.cur.fetchone()
        return review_from_row(row) if row else None

    def update_review(self, review: Review) -> Review:
        self.cur.execute(f"""
            UPDATE reviews SET content = %s, rating = %s, updated_at = now()
            WHERE id = %s
            RETURNING {REVIEW_COLUMNS}
        """, (review.content, review.rating, review.id))
        return review_from_row(self.cur.fetchone())

    def delete_review(self, review_id: int) -> bool:
        self.cur.execute("DELETE FROM reviews WHERE id = %s", (review_id,))
        return self.cur.rowcount > 0

    def list_reviews(self, book_id: int, limit: int, offset: int) -> List[Review]:
        self.cur.execute(f"""
            SELECT {REVIEW_COLUMNS}
            FROM reviews
            WHERE book_id = %s
            ORDER BY created_at DESC, id DESC
            LIMIT %s OFFSET %s
        """, (book_id, limit, offset))
        return [review_from_row(row) for row in self.cur.fetchall()]

    def stats(self) -> Dict[str, Any]:
        self.cur.execute("SELECT COUNT(*) FROM books")
        book_count = self.cur.fetchone()[0]

        self.cur.execute("SELECT COUNT(*) FROM book_identifiers")
        identifier_count = self.cur.fetchone()[0]

        self.cur.execute("SELECT COUNT(*) FROM reviews")
        review_count = self.cur.fetchone()[0]

        return {
            "total_books": book_count,
            "total_identifiers": identifier_count,
            "total_reviews": review_count
        }


class Database:
    """PostgreSQL database with connection pooling."""

    def __init__(
        self,
        connection_string: Optional[str] = None,
        min_conn: int = 1,
        max_conn: int = 10,
        connection_pool=None
    ):
        """
        Initialize database connection pool.

        Args:
            connection_string: PostgreSQL connection string
            min_conn: Minimum connections in pool
            max_conn: Maximum connections in pool
            connection_pool: Ready-made pool, used instead of connection_string
        """
        if connection_pool is not None:
            self.connection_pool = connection_pool
        else:
            # Threaded pool: requests run concurrently on worker threads
            self.connection_pool = pool.ThreadedConnectionPool(
                min_conn,
                max_conn,
                connection_string
            )
            logger.info("Database connection pool created successfully")

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """
        Run statements in one transaction.

        Commits when the block finishes, rolls back on any exception and
        always hands the connection back to the pool. Driver errors surface
        as ConflictError (unique violations) or InternalError.
        """
        try:
            conn = self.connection_pool.getconn()
        except psycopg2.Error as e:
            logger.error(f"Could not get a database connection: {e}")
            raise InternalError("Datastore is unavailable") from e

        try:
            with conn.cursor() as cur:
                yield UnitOfWork(cur)
            conn.commit()
        except ShelfkeeperError:
            conn.rollback()
            raise
        except errors.UniqueViolation as e:
            conn.rollback()
            raise ConflictError("Record already exists") from e
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"Transaction aborted: {e}")
            raise InternalError("Datastore operation failed") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            self.connection_pool.putconn(conn)

    def init_schema(self):
        """Create database tables if they don't exist."""
        with self.transaction() as uow:
            cur = uow.cur
            cur.execute("""
                CREATE TABLE IF NOT EXISTS books (
                    id BIGSERIAL PRIMARY KEY,
                    external_id VARCHAR(64) NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    subtitle TEXT,
                    authors TEXT[] NOT NULL DEFAULT '{}',
                    genres TEXT[] NOT NULL DEFAULT '{}',
                    description TEXT,
                    cover_image TEXT,
                    cover_id BIGINT,
                    release_date VARCHAR(64),
                    average_rating NUMERIC(2, 1) NOT NULL DEFAULT 0,
                    rating_total BIGINT NOT NULL DEFAULT 0,
                    rating_count INTEGER NOT NULL DEFAULT 0 CHECK (rating_count >= 0),
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)

            # Every primary and alternative id, so no id can name two books
            cur.execute("""
                CREATE TABLE IF NOT EXISTS book_identifiers (
                    external_id VARCHAR(64) PRIMARY KEY,
                    book_id BIGINT NOT NULL REFERENCES books (id) ON DELETE CASCADE,
                    linked_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS reviews (
                    id BIGSERIAL PRIMARY KEY,
                    user_id VARCHAR(64) NOT NULL,
                    book_id BIGINT NOT NULL REFERENCES books (id) ON DELETE CASCADE,
                    content TEXT,
                    rating SMALLINT NOT NULL CHECK (rating BETWEEN 1 AND 5),
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    UNIQUE (user_id, book_id)
                )
            """)

            # Indexes for performance
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_book_identifiers_book
                ON book_identifiers (book_id)
            """)

            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_books_title_lower
                ON books (lower(title))
            """)

            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_books_authors
                ON books USING gin (authors)
            """)

            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_reviews_book_created
                ON reviews (book_id, created_at DESC)
            """)

        logger.info("Database schema initialized successfully")

    def find_book_by_identifier(self, external_id: str) -> Optional[Book]:
        with self.transaction() as uow:
            return uow.find_book_by_identifier(external_id)

    def get_book(self, book_id: int) -> Optional[Book]:
        """Get a book by local id."""
        with self.transaction() as uow:
            return uow.get_book(book_id)

    def find_books_by_title(self, title: str, authors: List[str], require_all: bool) -> List[Book]:
        with self.transaction() as uow:
            return uow.find_books_by_title(title, authors, require_all)

    def find_books_by_any_author(self, authors: List[str]) -> List[Book]:
        with self.transaction() as uow:
            return uow.find_books_by_any_author(authors)

    def create_book(self, book: Book) -> Book:
        """
        Insert a book with all its identifiers atomically.

        Raises:
            ConflictError: another book already claims one of the identifiers
        """
        with self.transaction() as uow:
            return uow.insert_book(book)

    def save_book(self, book: Book, refreshed: bool = True) -> Book:
        with self.transaction() as uow:
            return uow.update_book(book, refreshed)

    def touch_book(self, book_id: int):
        with self.transaction() as uow:
            return uow.touch_book(book_id)

    def get_review(self, review_id: int) -> Optional[Review]:
        with self.transaction() as uow:
            return uow.get_review(review_id)

    def list_reviews(self, book_id: int, limit: int = 10, offset: int = 0) -> List[Review]:
        with self.transaction() as uow:
            return uow.list_reviews(book_id, limit, offset)

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        with self.transaction() as uow:
            return uow.stats()

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
