"""Configuration management."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration."""

    # Database
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "shelfkeeper")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")
    DB_MIN_CONN = int(os.getenv("DB_MIN_CONN", "1"))
    DB_MAX_CONN = int(os.getenv("DB_MAX_CONN", "10"))

    @property
    def DATABASE_URL(self):
        """Build PostgreSQL connection string."""
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Catalog
    OPEN_LIBRARY_BASE_URL = os.getenv("OPEN_LIBRARY_BASE_URL", "https://openlibrary.org")
    OPEN_LIBRARY_USER_AGENT = os.getenv("OPEN_LIBRARY_USER_AGENT", "shelfkeeper/1.0")

    # Catalog calls sit on the request path, keep these short
    CATALOG_TIMEOUT = float(os.getenv("CATALOG_TIMEOUT", "3"))
    CATALOG_MAX_RETRIES = int(os.getenv("CATALOG_MAX_RETRIES", "2"))
    CATALOG_BACKOFF = float(os.getenv("CATALOG_BACKOFF", "0.25"))
    CATALOG_MAX_CONCURRENT = int(os.getenv("CATALOG_MAX_CONCURRENT", "5"))

    # Policies
    STALE_AFTER_DAYS = int(os.getenv("STALE_AFTER_DAYS", "7"))
    PRIVILEGED_ROLES = frozenset(
        role.strip()
        for role in os.getenv("PRIVILEGED_ROLES", "admin,librarian").split(",")
        if role.strip()
    )
