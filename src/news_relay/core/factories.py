"""
Factory functions for creating core components with proper dependency injection.

Every component is built from the configuration system in one place, so
tests can swap any single collaborator (retriever, notifier, store, clock)
and keep the rest configured as in production.

Usage:
    from news_relay.core.factories import run_relay

    report = asyncio.run(run_relay(config, topics=["economy"]))
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional

from news_relay.config import Config, get_config
from news_relay.core.coordinator import RunCoordinator, RunReport
from news_relay.core.deduplicator import Deduplicator
from news_relay.core.fetcher import DocumentRetriever, HttpDocumentRetriever, SourceFetcher
from news_relay.core.parser import ContentParser
from news_relay.core.selector import TimeWindowSelector
from news_relay.delivery.formatting import SlackMessageFormatter
from news_relay.delivery.slack import Notifier, SlackWebhookNotifier
from news_relay.storage.database import DatabaseManager
from news_relay.storage.watermark_store import (
    BaseWatermarkStore,
    JsonWatermarkStore,
    SqlWatermarkStore,
)


def create_retriever(config: Optional[Config] = None) -> HttpDocumentRetriever:
    """Create an HTTP document retriever; use it with 'async with'."""
    config = config or get_config()
    return HttpDocumentRetriever(
        user_agent=config.fetcher.user_agent,
        timeout_seconds=config.fetcher.timeout_seconds,
        follow_redirects=config.fetcher.follow_redirects,
    )


def create_fetcher(
    retriever: DocumentRetriever,
    config: Optional[Config] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SourceFetcher:
    """Create a configured SourceFetcher instance.

    Args:
        retriever: Document retriever
        config: Configuration, global one by default
        sleep: Awaitable sleep used between retries

    Returns:
        Configured SourceFetcher instance
    """
    config = config or get_config()
    return SourceFetcher(
        retriever=retriever,
        timeout_seconds=config.fetcher.timeout_seconds,
        max_attempts=config.fetcher.max_attempts,
        backoff_base_seconds=config.fetcher.backoff_base_seconds,
        sleep=sleep,
    )


def create_selector(config: Optional[Config] = None) -> TimeWindowSelector:
    """Create a TimeWindowSelector with its ContentParser."""
    config = config or get_config()
    return TimeWindowSelector(
        parser=ContentParser(reference_timezone=config.window.reference_timezone),
        max_articles_per_source=config.fetcher.max_articles_per_source,
    )


def create_deduplicator(config: Optional[Config] = None) -> Deduplicator:
    """Create a configured Deduplicator instance."""
    config = config or get_config()
    return Deduplicator(
        threshold=config.deduplicator.title_similarity_threshold,
        index=config.deduplicator.index,
        near_duplicates=config.deduplicator.enabled,
    )


def create_formatter(config: Optional[Config] = None) -> SlackMessageFormatter:
    """Create a configured SlackMessageFormatter instance."""
    config = config or get_config()
    return SlackMessageFormatter(
        username=config.delivery.username,
        icon_emoji=config.delivery.icon_emoji,
        max_articles_per_message=config.delivery.max_articles_per_message,
        description_max_length=config.delivery.description_max_length,
        button_text=config.delivery.button_text,
    )


def create_notifier(config: Optional[Config] = None) -> SlackWebhookNotifier:
    """Create a Slack notifier; use it with 'async with'."""
    config = config or get_config()
    return SlackWebhookNotifier(timeout_seconds=config.delivery.timeout_seconds)


def create_watermark_store(
    config: Optional[Config] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> BaseWatermarkStore:
    """Create the watermark store selected by the configuration.

    Args:
        config: Configuration, global one by default
        clock: Returns the current aware time

    Returns:
        JSON or SQLite backed store
    """
    config = config or get_config()
    kwargs = {
        "default_lookback_minutes": config.window.default_lookback_minutes,
        "clock": clock,
    }
    if config.watermark.backend == "sqlite":
        return SqlWatermarkStore(DatabaseManager(config.watermark.database_path), **kwargs)
    return JsonWatermarkStore(config.watermark.path, **kwargs)


def create_coordinator(
    retriever: DocumentRetriever,
    notifier: Notifier,
    config: Optional[Config] = None,
    watermark_store: Optional[BaseWatermarkStore] = None,
    clock: Optional[Callable[[], datetime]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RunCoordinator:
    """Create a RunCoordinator wired from configuration.

    Args:
        retriever: Document retriever
        notifier: Delivery sink
        config: Configuration, global one by default
        watermark_store: Store override; built from configuration for the watermark policy
        clock: Returns the current aware time
        sleep: Awaitable sleep for retry backoff and delivery pacing

    Returns:
        Configured RunCoordinator instance
    """
    config = config or get_config()
    if watermark_store is None and config.window.policy == "watermark":
        watermark_store = create_watermark_store(config, clock=clock)

    return RunCoordinator(
        config=config,
        fetcher=create_fetcher(retriever, config, sleep=sleep),
        selector=create_selector(config),
        deduplicator=create_deduplicator(config),
        formatter=create_formatter(config),
        notifier=notifier,
        watermark_store=watermark_store,
        clock=clock,
        sleep=sleep,
    )


async def run_relay(
    config: Optional[Config] = None,
    topics: Optional[Iterable[str]] = None,
    dry_run: bool = False,
    watermark_store: Optional[BaseWatermarkStore] = None,
) -> RunReport:
    """Run once with HTTP retrieval and Slack delivery.

    Topics are resolved before any client is opened, so configuration
    errors surface without network or file-system I/O.

    Raises:
        ConfigurationError: Unknown topic or missing destination
    """
    config = config or get_config()
    topic_ids = list(topics or [])
    config.resolve_topics(topic_ids)

    async with create_retriever(config) as retriever, create_notifier(config) as notifier:
        coordinator = create_coordinator(
            retriever,
            notifier,
            config=config,
            watermark_store=watermark_store,
        )
        return await coordinator.run(topic_ids, dry_run=dry_run)
