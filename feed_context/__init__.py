"""feed_context - RSS feed ingestion and chat context retrieval."""

__version__ = "0.1.0"
