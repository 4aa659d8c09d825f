"""
Time-window selection of fresh articles.

Two boundary policies decide which fetched entries count as new for a run:
a watermark (strictly newer than the last delivered instant) or a fixed
window relative to now (closed interval, used by stateless runs).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from news_relay.config import SourceConfig
from news_relay.core.parser import ContentParser
from news_relay.exceptions import ParseError
from news_relay.logger import get_logger
from news_relay.models import Article

logger = get_logger(__name__)


@dataclass(frozen=True)
class WatermarkBoundary:
    """Keep articles published strictly after the watermark."""

    watermark: datetime

    def contains(self, instant: datetime) -> bool:
        return instant > self.watermark

    def __str__(self) -> str:
        return f"after {self.watermark.isoformat()}"


@dataclass(frozen=True)
class FixedWindow:
    """Keep articles published within [start, end], both ends included."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Window start {self.start} is after end {self.end}")

    @classmethod
    def relative_to(cls, now: datetime, start_minutes_ago: int, end_minutes_ago: int = 0) -> "FixedWindow":
        """Build a window such as "the last 60 minutes" or "60 to 10 minutes ago".

        A non-zero end leaves room for upstream publication lag.
        """
        return cls(
            start=now - timedelta(minutes=start_minutes_ago),
            end=now - timedelta(minutes=end_minutes_ago),
        )

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end

    def __str__(self) -> str:
        return f"between {self.start.isoformat()} and {self.end.isoformat()}"


Boundary = Union[WatermarkBoundary, FixedWindow]


@dataclass
class SelectionResult:
    """Articles considered new for one source, plus what was left out."""

    articles: list[Article] = field(default_factory=list)
    total: int = 0
    parse_failures: int = 0
    outside_window: int = 0
    capped: int = 0
    # Newest kept publish time when the cap deferred newer articles
    capped_at: Optional[datetime] = None

    @property
    def newest_publish_time(self):
        if not self.articles:
            return None
        return max(article.publish_time for article in self.articles)


class TimeWindowSelector:
    """Select the entries of one source that fall inside a boundary."""

    def __init__(self, parser: ContentParser, max_articles_per_source: int = 0):
        """Initialize selector.

        Args:
            parser: Parser turning raw entries into articles
            max_articles_per_source: Keep at most N oldest new articles, the rest wait for the next run (0=unlimited)
        """
        self.parser = parser
        self.max_articles_per_source = max_articles_per_source

    def select(
        self,
        entries: Iterable[dict],
        boundary: Boundary,
        source: SourceConfig,
        topic: str,
        emoji: str = "",
    ) -> SelectionResult:
        """Parse entries and keep those inside the boundary.

        Entries whose publish time cannot be parsed are dropped and counted.

        Args:
            entries: Raw feed entries in feed order
            boundary: Watermark or fixed window
            source: Source the entries came from
            topic: Topic the source belongs to
            emoji: Topic label for formatting

        Returns:
            SelectionResult with articles newest-first
        """
        result = SelectionResult()

        for raw_entry in entries:
            result.total += 1
            try:
                article = self.parser.parse_entry(raw_entry, source, topic, emoji=emoji)
            except ParseError as e:
                result.parse_failures += 1
                logger.warning(f"Skipping entry from {source.name}: {e}")
                continue

            if boundary.contains(article.publish_time):
                result.articles.append(article)
            else:
                result.outside_window += 1

        # Stable sort keeps feed order for equal timestamps
        result.articles.sort(key=lambda a: a.publish_time, reverse=True)

        if self.max_articles_per_source and len(result.articles) > self.max_articles_per_source:
            self._apply_cap(result)

        logger.debug(
            f"{source.name}: {len(result.articles)}/{result.total} new {boundary} "
            f"({result.parse_failures} unparseable)"
        )
        return result

    def _apply_cap(self, result: SelectionResult) -> None:
        """Keep the oldest N articles so the watermark stops short of the deferred ones."""
        cut = len(result.articles) - self.max_articles_per_source
        deferred, kept = result.articles[:cut], result.articles[cut:]

        # Kept articles sharing a timestamp with a deferred one would end up at
        # the watermark and never be selected again
        oldest_deferred = deferred[-1].publish_time
        untied = [article for article in kept if article.publish_time < oldest_deferred]
        if untied:
            kept = untied

        result.capped = len(result.articles) - len(kept)
        result.articles = kept
        result.capped_at = kept[0].publish_time
