#!/usr/bin/env python3
"""Shelfkeeper CLI - book resolution and reviews."""
import argparse
import asyncio
import sys
import json
from datetime import timedelta
from tabulate import tabulate
from shelfkeeper.client import OpenLibraryClient
from shelfkeeper.async_client import AsyncOpenLibraryClient, PrefetchedCatalog
from shelfkeeper.database import Database
from shelfkeeper.errors import ShelfkeeperError
from shelfkeeper.ratings import ReviewService
from shelfkeeper.resolver import BookResolver
from shelfkeeper.config import Config
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def setup_database(config: Config) -> Database:
    """Open the connection pool."""
    return Database(config.DATABASE_URL, config.DB_MIN_CONN, config.DB_MAX_CONN)


def make_client(config: Config) -> OpenLibraryClient:
    return OpenLibraryClient(
        base_url=config.OPEN_LIBRARY_BASE_URL,
        timeout=config.CATALOG_TIMEOUT,
        max_retries=config.CATALOG_MAX_RETRIES,
        base_backoff=config.CATALOG_BACKOFF,
        user_agent=config.OPEN_LIBRARY_USER_AGENT
    )


def book_to_dict(book):
    return {
        "id": book.id,
        "external_id": book.external_id,
        "alternative_ids": book.alternative_ids,
        "title": book.title,
        "subtitle": book.subtitle,
        "authors": book.authors,
        "genres": book.genres,
        "description": book.description,
        "cover_image": book.cover_image,
        "release_date": book.release_date,
        "average_rating": str(book.average_rating),
        "rating_count": book.rating_count,
        "updated_at": book.updated_at.isoformat() if book.updated_at else None
    }


def review_to_dict(review):
    return {
        "id": review.id,
        "user_id": review.user_id,
        "book_id": review.book_id,
        "rating": review.rating,
        "content": review.content,
        "created_at": review.created_at.isoformat() if review.created_at else None
    }


def display_books(books, format_type: str):
    """Display books in specified format."""
    if format_type == "table":
        headers = ["ID", "Work", "Title", "Authors", "Genres", "Released", "Rating", "Aliases"]
        rows = [
            [
                book.id,
                book.external_id,
                book.title[:50] + "..." if len(book.title) > 50 else book.title,
                book.authors_str[:30] + "..." if len(book.authors_str) > 30 else book.authors_str,
                book.genres_str[:30] + "..." if len(book.genres_str) > 30 else book.genres_str,
                book.release_date or "Unknown",
                f"{book.average_rating} ({book.rating_count})",
                ", ".join(book.alternative_ids) or "-"
            ]
            for book in books
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        print(json.dumps([book_to_dict(book) for book in books], indent=2))


def display_reviews(reviews, format_type: str):
    if format_type == "table":
        headers = ["ID", "User", "Rating", "Review"]
        rows = [
            [
                review.id,
                review.user_id,
                review.rating,
                (review.content or "")[:60]
            ]
            for review in reviews
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        print(json.dumps([review_to_dict(review) for review in reviews], indent=2))


def init_db(args, config: Config):
    db = setup_database(config)
    try:
        db.init_schema()
    finally:
        db.close()


def resolve_book(args, config: Config):
    """Resolve one work id to its local book."""
    db = setup_database(config)

    try:
        with make_client(config) as client:
            resolver = BookResolver(db, client, stale_after=timedelta(days=config.STALE_AFTER_DAYS))
            book = resolver.resolve(args.external_id, args.title, args.author or [])
            display_books([book], args.format)

    finally:
        db.close()


async def fetch_works(external_ids, config: Config):
    async with AsyncOpenLibraryClient(
        base_url=config.OPEN_LIBRARY_BASE_URL,
        timeout=config.CATALOG_TIMEOUT,
        max_concurrent=config.CATALOG_MAX_CONCURRENT,
        user_agent=config.OPEN_LIBRARY_USER_AGENT
    ) as client:
        return await client.fetch_many(external_ids)


def import_books(args, config: Config):
    """Prefetch many works in parallel, then resolve each one."""
    if args.file:
        with open(args.file, encoding="utf-8") as f:
            external_ids = [line.strip() for line in f if line.strip()]
    else:
        external_ids = args.external_ids

    if not external_ids:
        logger.error("No work ids given")
        return

    logger.info(f"Prefetching {len(external_ids)} works")
    results = asyncio.run(fetch_works(external_ids, config))

    db = setup_database(config)
    try:
        resolver = BookResolver(
            db,
            PrefetchedCatalog(results),
            stale_after=timedelta(days=config.STALE_AFTER_DAYS)
        )
        books = []
        for external_id in dict.fromkeys(external_ids):
            try:
                books.append(resolver.resolve(external_id))
            except ShelfkeeperError as e:
                logger.warning(f"Skipping {external_id}: {e.message}")

        unique = {book.id: book for book in books}
        logger.info(f"Resolved {len(books)} ids to {len(unique)} books")
        display_books(list(unique.values()), args.format)

    finally:
        db.close()


def review_command(args, config: Config):
    db = setup_database(config)

    try:
        service = ReviewService(db, config.PRIVILEGED_ROLES)

        if args.review_command == "remove":
            service.remove_review(args.user, args.review_id, args.role)
            print(f"✅ Review {args.review_id} removed")
            return

        if args.review_command == "add":
            review = service.add_review(args.user, args.book_id, args.rating, args.content)
        else:
            review = service.update_review(args.user, args.review_id, args.content, args.rating)

        display_reviews([review], args.format)
        # Show the refreshed aggregate
        display_books([db.get_book(review.book_id)], args.format)

    finally:
        db.close()


def list_reviews(args, config: Config):
    db = setup_database(config)

    try:
        service = ReviewService(db, config.PRIVILEGED_ROLES)
        reviews = service.list_reviews(args.book_id, page=args.page, limit=args.limit)
        display_reviews(reviews, args.format)

    finally:
        db.close()


def show_stats(args, config: Config):
    """Show database statistics."""
    db = setup_database(config)

    try:
        stats = db.get_stats()

        print("\n" + "=" * 50)
        print("DATABASE STATISTICS")
        print("=" * 50)
        print(f"Total books stored: {stats['total_books']}")
        print(f"Known work identifiers: {stats['total_identifiers']}")
        print(f"Total reviews: {stats['total_reviews']}")
        print("=" * 50 + "\n")

    finally:
        db.close()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Shelfkeeper - book resolution and reviews CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create tables
  %(prog)s init-db

  # Resolve a work, matching editions by title and author
  %(prog)s resolve OL893415W --title "Dune" --author "Frank Herbert"

  # Bulk import
  %(prog)s import --file works.txt

  # Review a book
  %(prog)s review add --user u1 --book-id 1 --rating 5 --content "Loved it"
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init-db", help="Create database tables")

    # Resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve a work id to a book")
    resolve_parser.add_argument("external_id", help="Open Library work id")
    resolve_parser.add_argument("--title", help="Title hint")
    resolve_parser.add_argument("--author", action="append", help="Author hint (repeatable)")
    resolve_parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    # Import command
    import_parser = subparsers.add_parser("import", help="Resolve many work ids")
    import_parser.add_argument("external_ids", nargs="*", help="Open Library work ids")
    import_parser.add_argument("--file", help="File with one work id per line")
    import_parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    # Review commands
    review_parser = subparsers.add_parser("review", help="Add, update or remove a review")
    review_sub = review_parser.add_subparsers(dest="review_command", required=True)

    add_parser = review_sub.add_parser("add")
    add_parser.add_argument("--user", required=True)
    add_parser.add_argument("--book-id", type=int, required=True)
    add_parser.add_argument("--rating", type=int, choices=range(1, 6), required=True)
    add_parser.add_argument("--content")

    update_parser = review_sub.add_parser("update")
    update_parser.add_argument("--user", required=True)
    update_parser.add_argument("--review-id", type=int, required=True)
    update_parser.add_argument("--rating", type=int, choices=range(1, 6))
    update_parser.add_argument("--content")

    remove_parser = review_sub.add_parser("remove")
    remove_parser.add_argument("--user", required=True)
    remove_parser.add_argument("--review-id", type=int, required=True)
    remove_parser.add_argument("--role", default="user")

    for sub in (add_parser, update_parser, remove_parser):
        sub.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    # Reviews listing
    reviews_parser = subparsers.add_parser("reviews", help="List reviews of a book")
    reviews_parser.add_argument("book_id", type=int)
    reviews_parser.add_argument("--page", type=int, default=1)
    reviews_parser.add_argument("--limit", type=int, default=10)
    reviews_parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    # Stats command
    subparsers.add_parser("stats", help="Show database statistics")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = Config()

    commands = {
        "init-db": init_db,
        "resolve": resolve_book,
        "import": import_books,
        "review": review_command,
        "reviews": list_reviews,
        "stats": show_stats,
    }

    try:
        commands[args.command](args, config)

    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(0)
    except ShelfkeeperError as e:
        logger.error(f"❌ {e.kind}: {e.message}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"❌ Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
