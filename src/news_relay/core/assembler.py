"""
Grouping of deduplicated articles into per-topic delivery batches.
"""

from typing import Iterable

from news_relay.models import Article


def assemble(articles: Iterable[Article]) -> dict[str, list[Article]]:
    """Group articles by topic, keeping their order.

    Topics appear in order of their first article. A topic without articles
    never gets an entry, so it produces no delivery.

    Args:
        articles: Deduplicated articles, newest-first

    Returns:
        Mapping of topic id to its articles
    """
    batches: dict[str, list[Article]] = {}
    for article in articles:
        batches.setdefault(article.topic, []).append(article)
    return batches
