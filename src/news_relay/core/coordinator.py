"""
Run coordination: fetch, select, merge, dedupe, assemble, deliver, commit.

One run pulls every source of the requested topics concurrently, keeps the
entries newer than each source's boundary, removes duplicates across the
whole pool, posts one batch per topic and finally advances the watermarks of
everything that was delivered. A failing source or destination never stops
the others; it is recorded in the run report and its watermark stays put so
the next run retries from the same boundary.
"""

import asyncio
import json
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from news_relay.config import Config, TopicConfig
from news_relay.core.assembler import assemble
from news_relay.core.deduplicator import Deduplicator
from news_relay.core.fetcher import SourceFetcher
from news_relay.core.selector import Boundary, FixedWindow, TimeWindowSelector, WatermarkBoundary
from news_relay.delivery.formatting import SlackMessageFormatter
from news_relay.delivery.slack import DeliveryResult, Notifier
from news_relay.logger import get_logger
from news_relay.models import Article
from news_relay.storage.watermark_store import BaseWatermarkStore

logger = get_logger(__name__)


class RunState(str, Enum):
    """Terminal state of a run."""

    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed_with_failures"
    ABORTED = "aborted"


@dataclass
class RunFailure:
    """One thing that went wrong during a run."""

    subject: str
    message: str
    kind: str = "fetch"

    def __str__(self) -> str:
        return f"[{self.kind}] {self.subject}: {self.message}"


@dataclass
class RunReport:
    """Structured outcome of one run."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    state: RunState = RunState.COMPLETED
    dry_run: bool = False

    sources_total: int = 0
    sources_failed: int = 0
    parse_failures: int = 0
    duplicates_dropped: int = 0
    articles_deferred: int = 0
    articles_delivered: int = 0

    topics_delivered: list[str] = field(default_factory=list)
    topics_failed: list[str] = field(default_factory=list)
    topics_without_news: list[str] = field(default_factory=list)

    failures: list[RunFailure] = field(default_factory=list)
    watermarks_advanced: dict[str, datetime] = field(default_factory=dict)
    batches: dict[str, list[Article]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state == RunState.COMPLETED

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> str:
        """Human readable end-of-run summary."""
        lines = [
            f"Run {self.state.value}{' (dry run)' if self.dry_run else ''} "
            f"in {self.duration_seconds:.1f}s: "
            f"{len(self.topics_delivered)} topic(s) delivered, "
            f"{len(self.topics_failed)} failed, "
            f"{len(self.topics_without_news)} without news, "
            f"{self.articles_delivered} article(s) delivered",
            f"  sources: {self.sources_total - self.sources_failed}/{self.sources_total} fetched, "
            f"{self.duplicates_dropped} duplicate(s) dropped, "
            f"{self.articles_deferred} deferred to the next run, "
            f"{self.parse_failures} unparseable entr{'y' if self.parse_failures == 1 else 'ies'}",
        ]
        if self.failures:
            lines.append("  failures:")
            lines.extend(f"    - {failure}" for failure in self.failures)
        return "\n".join(lines)


class RunCoordinator:
    """Drive one relay run over the configured topics."""

    def __init__(
        self,
        config: Config,
        fetcher: SourceFetcher,
        selector: TimeWindowSelector,
        deduplicator: Deduplicator,
        formatter: SlackMessageFormatter,
        notifier: Notifier,
        watermark_store: Optional[BaseWatermarkStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize coordinator.

        Args:
            config: Application configuration (topics, window policy, delivery pacing)
            fetcher: Source fetcher
            selector: Time-window selector
            deduplicator: Duplicate resolver
            formatter: Renders topic batches into payloads
            notifier: Delivers payloads
            watermark_store: Required for the watermark policy
            clock: Returns the current aware time
            sleep: Awaitable sleep used for delivery pacing
        """
        if config.window.policy == "watermark" and watermark_store is None:
            raise ValueError("The watermark policy needs a watermark store")

        self.config = config
        self.fetcher = fetcher
        self.selector = selector
        self.deduplicator = deduplicator
        self.formatter = formatter
        self.notifier = notifier
        self.watermark_store = watermark_store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.sleep = sleep

    @property
    def uses_watermarks(self) -> bool:
        return self.config.window.policy == "watermark"

    def watermark_key(self, topic_id: str, source_key: str) -> str:
        """Key a source's progress is stored under."""
        if self.config.watermark.scope == "topic":
            return topic_id
        return f"{topic_id}:{source_key}"

    def _load_boundaries(self, topics: list[TopicConfig], now: datetime) -> dict[str, Boundary]:
        if not self.uses_watermarks:
            window = FixedWindow.relative_to(
                now,
                self.config.window.window_start_minutes_ago,
                self.config.window.window_end_minutes_ago,
            )
            logger.info(f"Selecting articles published {window}")
            return {
                self.watermark_key(topic.id, source.key): window
                for topic in topics
                for source in topic.sources
            }

        boundaries: dict[str, Boundary] = {}
        for topic in topics:
            for source in topic.sources:
                key = self.watermark_key(topic.id, source.key)
                if key not in boundaries:
                    boundaries[key] = WatermarkBoundary(self.watermark_store.load(key))
        return boundaries

    async def run(self, topics: Optional[Iterable[str]] = None, dry_run: bool = False) -> RunReport:
        """Execute one run.

        Args:
            topics: Topic ids to run, all configured topics when empty
            dry_run: Render payloads without delivering or committing

        Returns:
            RunReport

        Raises:
            ConfigurationError: Unknown topic or missing destination, before any I/O
        """
        resolved = self.config.resolve_topics(topics)
        topics_by_id = {topic.id: topic for topic in resolved}
        report = RunReport(started_at=self.clock(), dry_run=dry_run)

        logger.info(f"Starting run for topics: {', '.join(topics_by_id)}")

        try:
            boundaries = self._load_boundaries(resolved, report.started_at)
        except Exception as e:
            logger.exception(f"Run aborted before fetching: {e}")
            report.state = RunState.ABORTED
            report.failures.append(RunFailure("run", f"{type(e).__name__}: {e}", kind="internal"))
            report.finished_at = self.clock()
            return report

        # Fan out, then work on the settled results only
        results = await self.fetcher.fetch_many(resolved)
        report.sources_total = len(results)

        pool: list[Article] = []
        failed_keys: set[str] = set()
        newest: dict[str, datetime] = {}
        ceilings: dict[str, datetime] = {}

        for result in results:
            key = self.watermark_key(result.topic, result.source.key)
            if not result.success:
                report.sources_failed += 1
                failed_keys.add(key)
                report.failures.append(RunFailure(result.source_label, result.error, kind="fetch"))
                continue

            selection = self.selector.select(
                result.entries,
                boundaries[key],
                result.source,
                result.topic,
                emoji=topics_by_id[result.topic].emoji,
            )
            report.parse_failures += selection.parse_failures
            report.articles_deferred += selection.capped
            pool.extend(selection.articles)
            if selection.capped_at is not None:
                ceilings[key] = min(selection.capped_at, ceilings.get(key, selection.capped_at))

            latest = selection.newest_publish_time
            if latest is not None and (key not in newest or latest > newest[key]):
                newest[key] = latest

        # Stable sort: equal timestamps keep configuration and feed order
        pool.sort(key=lambda article: article.publish_time, reverse=True)

        dedup = self.deduplicator.dedupe(pool)
        report.duplicates_dropped = dedup.dropped_count

        batches = assemble(dedup.articles)
        report.batches = batches
        delivery_errors = await self._deliver(topics_by_id, batches, dry_run)

        for topic in resolved:
            if topic.id not in batches:
                report.topics_without_news.append(topic.id)
                continue
            error = delivery_errors.get(topic.id)
            if error is None:
                report.topics_delivered.append(topic.id)
                report.articles_delivered += len(batches[topic.id])
            else:
                report.topics_failed.append(topic.id)
                report.failures.append(RunFailure(topic.id, error, kind="delivery"))

        if self.uses_watermarks and not dry_run:
            self._commit_watermarks(resolved, report, failed_keys, newest, ceilings)

        if report.failures:
            report.state = RunState.COMPLETED_WITH_FAILURES
        report.finished_at = self.clock()

        if report.ok:
            logger.info(report.summary())
        else:
            logger.warning(report.summary())
        return report

    def _commit_watermarks(
        self,
        topics: list[TopicConfig],
        report: RunReport,
        failed_keys: set[str],
        newest: dict[str, datetime],
        ceilings: dict[str, datetime],
    ) -> None:
        """Advance watermarks of keys whose articles all reached their destination."""
        topic_of_key = {}
        for topic in topics:
            for source in topic.sources:
                topic_of_key[self.watermark_key(topic.id, source.key)] = topic.id

        for key, topic_id in topic_of_key.items():
            if key in failed_keys or topic_id in report.topics_failed:
                continue
            latest = newest.get(key)
            if latest is None:
                continue

            # Items dated in the future must not push the boundary past now
            instant = min(latest, report.started_at)
            # Articles held back by the per-source cap stay above the watermark
            if key in ceilings:
                instant = min(instant, ceilings[key])
            try:
                if self.watermark_store.commit(key, instant):
                    report.watermarks_advanced[key] = instant
            except Exception as e:
                logger.exception(f"Failed to store watermark {key}: {e}")
                report.failures.append(RunFailure(key, f"{type(e).__name__}: {e}", kind="watermark"))

    async def _deliver(
        self,
        topics_by_id: dict[str, TopicConfig],
        batches: dict[str, list[Article]],
        dry_run: bool,
    ) -> dict[str, Optional[str]]:
        """Deliver every batch; returns topic id -> error (None on success)."""
        queues: dict[str, list[tuple[TopicConfig, list[dict]]]] = defaultdict(list)
        for topic_id, articles in batches.items():
            topic = topics_by_id[topic_id]
            payloads = self.formatter.format(topic, articles)
            queues[topic.destination].append((topic, payloads))

        # Distinct destinations are independent; one destination is paced
        outcomes = await asyncio.gather(
            *(
                self._deliver_to_destination(destination, queue, dry_run)
                for destination, queue in queues.items()
            )
        )

        errors: dict[str, Optional[str]] = {}
        for outcome in outcomes:
            errors.update(outcome)
        return errors

    async def _deliver_to_destination(
        self,
        destination: str,
        queue: list[tuple[TopicConfig, list[dict]]],
        dry_run: bool,
    ) -> dict[str, Optional[str]]:
        errors: dict[str, Optional[str]] = {}
        calls = 0

        for topic, payloads in queue:
            error = None
            for payload in payloads:
                if dry_run:
                    logger.info(
                        f"[dry run] {topic.id} payload:\n{json.dumps(payload, ensure_ascii=False, indent=2)}"
                    )
                    continue

                if calls:
                    await self.sleep(self.config.delivery.inter_call_delay_seconds)
                calls += 1

                try:
                    result = await self.notifier.deliver(payload, destination)
                except Exception as e:
                    logger.exception(f"Unexpected error delivering {topic.id}: {e}")
                    result = DeliveryResult(success=False, error=f"Unexpected error: {type(e).__name__}: {e}")

                if not result.success:
                    error = result.error
                    break

            if error is None:
                logger.info(f"Delivered {topic.id} in {len(payloads)} message(s)")
            else:
                logger.error(f"Delivery of {topic.id} failed: {error}")
            errors[topic.id] = error

        return errors
