"""Error taxonomy shared by the resolver, the review service and the datastore."""


class ShelfkeeperError(Exception):
    """Base class for every error the core reports to its callers."""

    kind = "internal"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ShelfkeeperError):
    """Resource absent, locally or in the external catalog."""
    kind = "not_found"


class ConflictError(ShelfkeeperError):
    """Duplicate identifier or duplicate (user, book) review."""
    kind = "conflict"


class ForbiddenError(ShelfkeeperError):
    """Caller may not mutate the resource."""
    kind = "forbidden"


class UpstreamUnavailableError(ShelfkeeperError):
    """Catalog fetch failed and there was no local record to fall back to."""
    kind = "upstream_unavailable"
    retryable = True


class InternalError(ShelfkeeperError):
    """Unexpected datastore failure. The transaction was aborted."""
    kind = "internal"
