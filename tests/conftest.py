"""Shared fixtures and fakes for news relay tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Optional
from xml.sax.saxutils import escape

import pytest

from news_relay.config import (
    Config,
    DeduplicatorConfig,
    DeliveryConfig,
    FetcherConfig,
    SourceConfig,
    TopicConfig,
    WatermarkConfig,
    WindowConfig,
    set_config,
)
from news_relay.core.fetcher import RawFeedDocument, parse_feed_document
from news_relay.delivery.slack import DeliveryResult
from news_relay.models import Article

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
WEBHOOK = "https://hooks.slack.com/services/T000/B000/XXXX"

# Outcome telling FakeRetriever to block until the caller's timeout fires
HANG = object()


def minutes_ago(minutes: float) -> datetime:
    return NOW - timedelta(minutes=minutes)


def rss_item(title: str, link: str, published: Optional[datetime] = None, description: str = "") -> dict:
    return {"title": title, "link": link, "published": published, "description": description}


def rss_feed(items: list[dict], title: str = "Test Feed") -> bytes:
    """Render items into an RSS 2.0 document."""
    rendered = []
    for item in items:
        parts = [
            f"<title>{escape(item['title'])}</title>",
            f"<link>{escape(item['link'])}</link>",
            f"<description>{escape(item.get('description', ''))}</description>",
        ]
        published = item.get("published")
        if isinstance(published, datetime):
            parts.append(f"<pubDate>{format_datetime(published)}</pubDate>")
        elif published:
            parts.append(f"<pubDate>{escape(published)}</pubDate>")
        rendered.append(f"<item>{''.join(parts)}</item>")

    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel>'
        f"<title>{escape(title)}</title><link>https://example.com/</link>"
        "<description>Test</description>"
        f"{''.join(rendered)}"
        "</channel></rss>"
    ).encode("utf-8")


class FakeRetriever:
    """Retriever returning scripted outcomes per URL.

    An outcome is bytes (parsed as a feed), a RawFeedDocument, an exception
    to raise or HANG. The last outcome of a URL repeats for further calls.
    """

    def __init__(self, responses: dict):
        self.responses = {
            url: list(outcomes) if isinstance(outcomes, list) else [outcomes]
            for url, outcomes in responses.items()
        }
        self.calls: list[str] = []

    async def retrieve(self, url: str) -> RawFeedDocument:
        self.calls.append(url)
        queue = self.responses[url]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]

        if outcome is HANG:
            await asyncio.sleep(3600)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, bytes):
            return parse_feed_document(outcome, url)
        return outcome


class FakeNotifier:
    """Notifier recording payloads; destinations listed in `failing` are rejected."""

    def __init__(self, failing: tuple = ()):
        self.failing = set(failing)
        self.deliveries: list[tuple[str, dict]] = []

    async def deliver(self, payload: dict, destination: str) -> DeliveryResult:
        self.deliveries.append((destination, payload))
        if destination in self.failing:
            return DeliveryResult(success=False, status_code=500, error="HTTP 500: internal_error")
        return DeliveryResult(success=True, status_code=200)


class RecordingSleep:
    """Awaitable sleep that returns at once and remembers the delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_source(name: str = "Source A", key: Optional[str] = None, **kwargs) -> SourceConfig:
    key = key or name.lower().replace(" ", "-")
    url = kwargs.pop("url", f"https://{key}.example.com/rss")
    return SourceConfig(name=name, key=key, url=url, **kwargs)


def make_topic(
    sources: list[SourceConfig],
    topic_id: str = "economy",
    name: str = "Economy",
    destination: Optional[str] = WEBHOOK,
    emoji: str = ":newspaper:",
) -> TopicConfig:
    return TopicConfig(id=topic_id, name=name, destination=destination, emoji=emoji, sources=sources)


def make_config(topics: list[TopicConfig], **sections) -> Config:
    """Build a Config with the given topics and section overrides."""
    sections.setdefault("fetcher", FetcherConfig(timeout_seconds=5, max_attempts=3, backoff_base_seconds=1.0))
    sections.setdefault("window", WindowConfig(policy="watermark", default_lookback_minutes=90))
    sections.setdefault("deduplicator", DeduplicatorConfig())
    sections.setdefault("delivery", DeliveryConfig(inter_call_delay_seconds=1.0))
    sections.setdefault("watermark", WatermarkConfig(scope="source"))
    return Config(topics={topic.id: topic for topic in topics}, **sections)


@pytest.fixture(autouse=True)
def reset_global_config():
    """Keep the global configuration from leaking between tests."""
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def notifier():
    return FakeNotifier()


def make_article(
    title: str,
    link: Optional[str] = None,
    minutes: float = 0,
    topic: str = "economy",
    source_id: str = "a",
    **kwargs,
) -> Article:
    """Build an Article published the given number of minutes before NOW."""
    return Article(
        title=title,
        link=link if link is not None else f"https://example.com/{title.lower().replace(' ', '-')}",
        publish_time=minutes_ago(minutes),
        source_id=source_id,
        topic=topic,
        **kwargs,
    )
