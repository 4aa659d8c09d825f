"""Integration tests for a complete relay run over mocked HTTP.

Feeds and the Slack webhook are served by httpx.MockTransport, so the
real retriever, parser, notifier and watermark stores are exercised
without network access.
"""

import asyncio
import json

import httpx
import pytest

from conftest import NOW, RecordingSleep, make_config, make_source, make_topic, minutes_ago, rss_feed, rss_item
from news_relay.config import WatermarkConfig
from news_relay.core.coordinator import RunState
from news_relay.core.factories import create_coordinator, create_watermark_store
from news_relay.core.fetcher import HttpDocumentRetriever
from news_relay.delivery.slack import SlackWebhookNotifier

FEED_A = rss_feed(
    [
        rss_item("Fed raises interest rates today", "https://a.example.com/1", minutes_ago(10)),
        rss_item("Chip exports climb in February", "https://a.example.com/2", minutes_ago(30)),
        rss_item("Old news from yesterday", "https://a.example.com/3", minutes_ago(24 * 60)),
    ]
)
FEED_B = rss_feed(
    [
        rss_item("Fed raises interest rates today again", "https://b.example.com/1", minutes_ago(15)),
        rss_item("Housing prices cool in Seoul", "https://b.example.com/2", minutes_ago(45)),
    ]
)


class MockServer:
    """Serve scripted feed responses and record webhook posts."""

    def __init__(self, feeds: dict):
        self.feeds = {host: list(responses) for host, responses in feeds.items()}
        self.posts: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "hooks.slack.com":
            self.posts.append(json.loads(request.content))
            return httpx.Response(200, text="ok")

        responses = self.feeds[request.url.host]
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, int):
            return httpx.Response(response, text="unavailable")
        return httpx.Response(200, content=response, headers={"Content-Type": "application/rss+xml"})


def relay(server: MockServer, config, watermark_store=None, sleep=None):
    """Run the relay once against the mock server."""

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            async with HttpDocumentRetriever(user_agent="news-relay-test", client=client) as retriever, \
                    SlackWebhookNotifier(client=client) as notifier:
                coordinator = create_coordinator(
                    retriever,
                    notifier,
                    config=config,
                    watermark_store=watermark_store,
                    clock=lambda: NOW,
                    sleep=sleep or RecordingSleep(),
                )
                return await coordinator.run()

    return asyncio.run(go())


@pytest.fixture
def config(tmp_path):
    topic = make_topic([make_source("Source A", key="a"), make_source("Source B", key="b")])
    return make_config([topic], watermark=WatermarkConfig(path=str(tmp_path / "last_check.json")))


@pytest.mark.integration
class TestRelayPipeline:
    """End-to-end runs through the HTTP retriever and Slack notifier."""

    def test_fresh_articles_delivered_once(self, config):
        """Test a first run and an immediate repeat over the same feeds."""
        server = MockServer({"a.example.com": [FEED_A], "b.example.com": [FEED_B]})

        first = relay(server, config)

        assert first.state == RunState.COMPLETED
        assert first.articles_delivered == 3
        assert first.duplicates_dropped == 1
        assert len(server.posts) == 1

        body = json.dumps(server.posts[0], ensure_ascii=False)
        assert "https://a.example.com/1" in body
        assert "https://b.example.com/1" not in body
        assert "https://a.example.com/3" not in body

        second = relay(server, config)

        assert second.state == RunState.COMPLETED
        assert second.articles_delivered == 0
        assert second.topics_without_news == ["economy"]
        assert len(server.posts) == 1

    def test_watermarks_persisted(self, config):
        """Test that each source watermark lands on its newest selected item."""
        server = MockServer({"a.example.com": [FEED_A], "b.example.com": [FEED_B]})

        relay(server, config)

        snapshot = create_watermark_store(config).snapshot()
        assert snapshot == {"economy:a": minutes_ago(10), "economy:b": minutes_ago(15)}

    def test_transient_error_retried(self, config):
        """Test that a 503 is retried with backoff and the run still completes."""
        server = MockServer({"a.example.com": [503, FEED_A], "b.example.com": [FEED_B]})
        sleep = RecordingSleep()

        report = relay(server, config, sleep=sleep)

        assert report.state == RunState.COMPLETED
        assert 1.0 in sleep.delays

    def test_failed_source_keeps_watermark(self, config):
        """Test that a source failing every attempt is not committed."""
        server = MockServer({"a.example.com": [503], "b.example.com": [FEED_B]})

        report = relay(server, config)

        assert report.state == RunState.COMPLETED_WITH_FAILURES
        assert report.sources_failed == 1
        assert report.articles_delivered == 2
        assert "economy:a" not in create_watermark_store(config).snapshot()

    def test_sqlite_backend(self, tmp_path):
        """Test a run persisting watermarks to SQLite."""
        topic = make_topic([make_source("Source A", key="a")])
        config = make_config(
            [topic],
            watermark=WatermarkConfig(backend="sqlite", database_path=str(tmp_path / "relay.db")),
        )
        server = MockServer({"a.example.com": [FEED_A]})

        report = relay(server, config)

        assert report.articles_delivered == 2
        assert create_watermark_store(config).snapshot() == {"economy:a": minutes_ago(10)}
        assert len(server.posts) == 1
