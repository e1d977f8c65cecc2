"""Exception types for feed_context.

Every error raised by the store, fetcher, parser and manager derives from
FeedContextError so callers can catch the whole family at once.
"""


class FeedContextError(Exception):
    """Base class for all feed_context errors."""


class InvalidInputError(FeedContextError, ValueError):
    """Raised for malformed arguments such as an unparseable feed URL."""


class DuplicateResourceError(FeedContextError, ValueError):
    """Raised when a feed with the same URL or id already exists."""


class NotFoundError(FeedContextError):
    """Raised when a feed, category or article does not exist."""


class TransportError(FeedContextError):
    """Raised when a feed cannot be fetched over the network."""


class ParseError(FeedContextError):
    """Raised when fetched content is not a usable RSS/Atom feed."""


class StoreError(FeedContextError):
    """Raised when the database rejects or fails an operation."""
