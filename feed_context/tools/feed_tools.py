"""Feed context MCP tools.

This module provides MCP tools for managing RSS feeds, querying their articles and
injecting article context into chat messages.

NOTE: Never use Optional parameters in MCP tools - they break MCP clients.
Use empty string "" for optional strings and 0 for optional integers.
"""

from dataclasses import asdict
from typing import Any, Dict, Optional

from mcp.server.fastmcp import Context

from feed_context.config import ServerConfig, get_config
from feed_context.errors import InvalidInputError
from feed_context.log_system.unified_logger import UnifiedLogger
from feed_context.models.schemas import Article, Category, Feed, FeedStatus
from feed_context.services.feed_manager import FeedManager, ManagerOptions
from feed_context.services.mention import MentionProcessor
from feed_context.storage.database import FeedStore


# Process-wide manager, installed by the server lifespan (or lazily on first use)
_manager: Optional[FeedManager] = None


async def init_feed_manager(config: Optional[ServerConfig] = None) -> FeedManager:
    """Create, initialize and install the process-wide FeedManager."""
    global _manager

    config = config or get_config()
    store = await FeedStore.open(config.db_path)
    manager = FeedManager(store, options=ManagerOptions.from_config(config))
    await manager.init()
    _manager = manager
    return manager


async def get_feed_manager() -> FeedManager:
    if _manager is None:
        return await init_feed_manager()
    return _manager


def set_feed_manager(manager: Optional[FeedManager]) -> None:
    """Install a manager (or None to clear it). Used by the server and tests."""
    global _manager
    _manager = manager


async def close_feed_manager() -> None:
    global _manager

    if _manager is not None:
        await _manager.close()
        _manager = None


def _feed_to_dict(feed: Feed) -> Dict[str, Any]:
    return {
        "id": feed.id,
        "url": feed.url,
        "title": feed.title,
        "description": feed.description,
        "site_url": feed.site_url,
        "icon_url": feed.icon_url,
        "category_id": feed.category_id,
        "tags": list(feed.tags),
        "status": FeedStatus(feed.status).value,
        "error_message": feed.error_message,
        "last_fetched_at": feed.last_fetched_at.isoformat() if feed.last_fetched_at else None,
        "article_count": feed.article_count,
        "unread_count": feed.unread_count,
    }


def _category_to_dict(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "color": category.color,
        "feed_count": category.feed_count,
    }


def _article_to_dict(article: Article) -> Dict[str, Any]:
    return {
        "id": article.id,
        "feed_id": article.feed_id,
        "title": article.title,
        "link": article.link,
        "author": article.author,
        "image_url": article.image_url,
        "published_at": article.published_at.isoformat(),
        "fetched_at": article.fetched_at.isoformat(),
        "is_read": article.is_read,
        "is_starred": article.is_starred,
    }


async def add_feed(
    url: str,
    category_id: str = "",
    tags: str = "",
    ctx: Context = None,
) -> Dict[str, Any]:
    """Subscribe to an RSS/Atom feed and pull its current articles.

    The URL must match an existing feed exactly to count as a duplicate; no
    normalization of trailing slashes or scheme case is applied.

    Args:
        url: Feed URL (http:// or https://)
        category_id: Category to file the feed under (empty string for none)
        tags: Comma-separated tags (empty string for none)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - feed: object with id, url, title, status, article_count, ...
        - error: string if success is False
    """
    logger = UnifiedLogger.get_logger(__name__)
    logger.info(f"add_feed called: url={url}")

    manager = await get_feed_manager()
    tag_list = [t.strip() for t in tags.split(",") if t.strip()]
    feed = await manager.add_feed(url, category_id=category_id or None, tags=tag_list)

    return {
        "success": True,
        "feed": _feed_to_dict(feed),
    }


async def remove_feed(feed_id: str, ctx: Context = None) -> Dict[str, Any]:
    """Remove a feed and all of its stored articles.

    Removing a feed that does not exist is not an error.

    Args:
        feed_id: ID of the feed (from list_feeds)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - message: confirmation string
    """
    logger = UnifiedLogger.get_logger(__name__)
    logger.info(f"remove_feed called: feed_id={feed_id}")

    manager = await get_feed_manager()
    await manager.remove_feed(feed_id)

    return {
        "success": True,
        "message": f"Removed feed '{feed_id}'",
    }


async def list_feeds(ctx: Context = None) -> Dict[str, Any]:
    """List all subscribed feeds with status and article counts.

    Args:
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - count: number of feeds
        - feeds: list of feed objects
    """
    logger = UnifiedLogger.get_logger(__name__)
    logger.info("list_feeds called")

    manager = await get_feed_manager()
    feeds = manager.get_managed_feeds()

    return {
        "success": True,
        "count": len(feeds),
        "feeds": [_feed_to_dict(f) for f in feeds],
    }


async def update_feed_status(feed_id: str, status: str, ctx: Context = None) -> Dict[str, Any]:
    """Pause or resume a feed.

    Paused feeds are skipped by refresh_feeds and by the automatic refresh.

    Args:
        feed_id: ID of the feed
        status: "active" or "paused"
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - feed: the updated feed object
    """
    logger = UnifiedLogger.get_logger(__name__)
    logger.info(f"update_feed_status called: feed_id={feed_id}, status={status}")

    if status not in (FeedStatus.ACTIVE.value, FeedStatus.PAUSED.value):
        raise InvalidInputError(f"Status must be 'active' or 'paused', got '{status}'")

    manager = await get_feed_manager()
    changes: Dict[str, Any] = {"status": status}
    if status == FeedStatus.ACTIVE.value:
        changes["error_message"] = None
    feed = await manager.update_feed(feed_id, **changes)

    return {
        "success": True,
        "feed": _feed_to_dict(feed),
    }


async def refresh_feeds(feed_id: str = "", ctx: Context = None) -> Dict[str, Any]:
    """Fetch new articles from one feed or from every non-paused feed.

    Uses conditional requests (ETag / Last-Modified), so unchanged feeds report 0
    new articles. When refreshing all feeds, one feed's failure is reported in its
    own result entry and never stops the others.

    Args:
        feed_id: Refresh only this feed (empty string refreshes all feeds)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - feeds_refreshed: number of feeds processed
        - total_new_articles: total new articles stored
        - results: list of per-feed results with feed_id, new_articles, error
    """
    logger = UnifiedLogger.get_logger(__name__)
    logger.info(f"refresh_feeds called: feed_id={feed_id}")

    manager = await get_feed_manager()

    if feed_id:
        outcomes = {feed_id: await manager.refresh_feed(feed_id)}
    else:
        outcomes = await manager.refresh_all_feeds()

    results = []
    total_new = 0
    for fid, outcome in outcomes.items():
        if isinstance(outcome, Exception):
            results.append({"feed_id": fid, "new_articles": 0, "error": str(outcome)})
        else:
            results.append({"feed_id": fid, "new_articles": outcome, "error": None})
            total_new += outcome

    return {
        "success": True,
        "feeds_refreshed": len(results),
        "total_new_articles": total_new,
        "results": results,
    }


async def list_categories(ctx: Context = None) -> Dict[str, Any]:
    """List feed categories with the number of feeds in each.

    Args:
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - categories: list of category objects with id, name, color, feed_count
    """
    manager = await get_feed_manager()
    categories = manager.get_categories()

    return {
        "success": True,
        "count": len(categories),
        "categories": [_category_to_dict(c) for c in categories],
    }


async def create_category(name: str, color: str = "", ctx: Context = None) -> Dict[str, Any]:
    """Create a category for grouping feeds.

    Args:
        name: Display name, also usable as @rss:<name> in chat
        color: Optional color (empty string for none)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - category: the created category object
    """
    logger = UnifiedLogger.get_logger(__name__)
    logger.info(f"create_category called: name={name}")

    manager = await get_feed_manager()
    category = await manager.create_category(name, color or None)

    return {
        "success": True,
        "category": _category_to_dict(category),
    }


async def delete_category(category_id: str, ctx: Context = None) -> Dict[str, Any]:
    """Delete a category.

    Feeds filed under the category are kept and keep their category reference.

    Args:
        category_id: ID of the category
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - message: confirmation string
    """
    manager = await get_feed_manager()
    await manager.delete_category(category_id)

    return {
        "success": True,
        "message": f"Deleted category '{category_id}'",
    }


async def list_recent_articles(
    hours: int = 24,
    limit: int = 50,
    feed_id: str = "",
    ctx: Context = None,
) -> Dict[str, Any]:
    """List articles published within the last N hours, newest first.

    Args:
        hours: Size of the time window in hours (default: 24)
        limit: Maximum number of articles to return (default: 50)
        feed_id: Only articles from this feed (empty string for all feeds)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - count: number of articles returned
        - articles: list of article objects
    """
    logger = UnifiedLogger.get_logger(__name__)
    logger.info(f"list_recent_articles called: hours={hours}, limit={limit}, feed_id={feed_id}")

    if hours <= 0 or limit <= 0:
        raise InvalidInputError("hours and limit must be positive")

    manager = await get_feed_manager()
    articles = await manager.get_recent_articles(
        hours=hours,
        limit=limit,
        feed_ids=[feed_id] if feed_id else None,
    )

    return {
        "success": True,
        "count": len(articles),
        "articles": [_article_to_dict(a) for a in articles],
    }


async def search_articles(query: str, limit: int = 50, ctx: Context = None) -> Dict[str, Any]:
    """Search article titles and content for a phrase (case-insensitive).

    Args:
        query: Text to look for
        limit: Maximum number of articles to return (default: 50)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - count: number of matches returned
        - articles: list of article objects
    """
    if not query.strip():
        raise InvalidInputError("Search query must not be empty")

    manager = await get_feed_manager()
    articles = await manager.search_articles(query, limit)

    return {
        "success": True,
        "count": len(articles),
        "articles": [_article_to_dict(a) for a in articles],
    }


async def mark_article_read(article_id: str, feed_id: str = "", ctx: Context = None) -> Dict[str, Any]:
    """Mark an article as read.

    Args:
        article_id: ID of the article (from list_recent_articles)
        feed_id: Feed the article belongs to (empty string matches any feed)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - article_id: the article updated
        - is_read: True
    """
    manager = await get_feed_manager()
    await manager.mark_as_read(article_id, feed_id or None)

    return {
        "success": True,
        "article_id": article_id,
        "is_read": True,
    }


async def mark_article_unread(article_id: str, feed_id: str = "", ctx: Context = None) -> Dict[str, Any]:
    """Mark an article as unread.

    Args:
        article_id: ID of the article (from list_recent_articles)
        feed_id: Feed the article belongs to (empty string matches any feed)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - article_id: the article updated
        - is_read: False
    """
    manager = await get_feed_manager()
    await manager.mark_as_unread(article_id, feed_id or None)

    return {
        "success": True,
        "article_id": article_id,
        "is_read": False,
    }


async def toggle_article_starred(article_id: str, feed_id: str = "", ctx: Context = None) -> Dict[str, Any]:
    """Star or unstar an article. Starred articles are kept past the retention window.

    Args:
        article_id: ID of the article
        feed_id: Feed the article belongs to (empty string matches any feed)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - article_id: the article updated
        - is_starred: the new starred state
    """
    manager = await get_feed_manager()
    starred = await manager.toggle_starred(article_id, feed_id or None)

    return {
        "success": True,
        "article_id": article_id,
        "is_starred": starred,
    }


async def list_starred_articles(limit: int = 100, ctx: Context = None) -> Dict[str, Any]:
    """List starred articles, newest first.

    Args:
        limit: Maximum number of articles to return (default: 100)
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - count: number of articles returned
        - articles: list of article objects
    """
    manager = await get_feed_manager()
    articles = await manager.get_starred_articles(limit)

    return {
        "success": True,
        "count": len(articles),
        "articles": [_article_to_dict(a) for a in articles],
    }


async def cleanup_articles(ctx: Context = None) -> Dict[str, Any]:
    """Delete unstarred articles older than the retention window.

    Args:
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - articles_deleted: number of articles removed
        - retention_days: the retention window applied
    """
    manager = await get_feed_manager()
    deleted = await manager.cleanup_old_articles()

    return {
        "success": True,
        "articles_deleted": deleted,
        "retention_days": manager.options.retention_days,
    }


async def process_mention(message: str, ctx: Context = None) -> Dict[str, Any]:
    """Expand @rss mentions in a chat message into recent-article context.

    Recognized mentions: @rss, @news, @rss:<category>, @feed:<feed title or id>.
    The returned message always starts with the original text; context is
    appended after it.

    Args:
        message: Outgoing chat message
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - has_mention: whether a mention was found
        - enriched_message: message to send in place of the original
        - context: articles used, feed_count, unread_count, time_range, filters (or null)
    """
    manager = await get_feed_manager()
    result = await MentionProcessor(manager).process(message)

    context = None
    if result.context is not None:
        start, end = result.context.time_range
        context = {
            "articles": [_article_to_dict(a) for a in result.context.articles],
            "feed_count": result.context.feed_count,
            "unread_count": result.context.unread_count,
            "time_range": {"start": start.isoformat(), "end": end.isoformat()},
            "category_filter": result.context.category_filter,
            "feed_filter": result.context.feed_filter,
        }

    return {
        "success": True,
        "has_mention": result.has_mention,
        "enriched_message": result.enriched_message,
        "context": context,
    }


async def mention_suggestions(ctx: Context = None) -> Dict[str, Any]:
    """List autocomplete entries for @rss mentions.

    Args:
        ctx: MCP Context object (injected automatically)

    Returns:
        Dictionary with:
        - success: bool
        - suggestions: list of objects with label, description, icon
    """
    manager = await get_feed_manager()
    suggestions = await MentionProcessor(manager).get_mention_suggestions()

    return {
        "success": True,
        "suggestions": [asdict(s) for s in suggestions],
    }


# List of feed tools for registration
feed_tools = [
    add_feed,
    remove_feed,
    list_feeds,
    update_feed_status,
    refresh_feeds,
    list_categories,
    create_category,
    delete_category,
    list_recent_articles,
    search_articles,
    mark_article_read,
    mark_article_unread,
    toggle_article_starred,
    list_starred_articles,
    cleanup_articles,
    process_mention,
    mention_suggestions,
]
