"""
RSS/Atom feed fetcher with timeout, retry and concurrent fan-out.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

import feedparser
import httpx

from news_relay.config import SourceConfig, TopicConfig
from news_relay.core.retry import RetryExhausted, retry_with_backoff
from news_relay.exceptions import FetchError, FetchHttpError, FetchMalformed, FetchTimeout
from news_relay.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RawFeedDocument:
    """A retrieved feed: ordered raw entries plus channel metadata."""

    url: str
    entries: list = field(default_factory=list)
    feed_info: dict = field(default_factory=dict)


class DocumentRetriever(Protocol):
    """Fetch a feed document by URL."""

    async def retrieve(self, url: str) -> RawFeedDocument:
        ...


def parse_feed_document(content: bytes, url: str) -> RawFeedDocument:
    """Parse feed bytes and check the result has the shape of a feed.

    Args:
        content: Raw response body
        url: Source URL, for error messages

    Returns:
        RawFeedDocument with the parsed entries

    Raises:
        FetchMalformed: Content is not an RSS/Atom document
    """
    parsed = feedparser.parse(content)
    entries = parsed.get("entries")

    if not isinstance(entries, list):
        raise FetchMalformed(f"Missing item collection in {url}", url=url)

    if not parsed.get("version"):
        # feedparser could not recognize any feed format
        reason = parsed.get("bozo_exception") or "unrecognized document format"
        raise FetchMalformed(f"Not a feed: {url} ({reason})", url=url)

    if parsed.get("bozo") and not entries:
        raise FetchMalformed(
            f"Malformed feed without items: {url} ({parsed.get('bozo_exception')})", url=url
        )

    feed = parsed.get("feed", {})
    feed_info = {
        "title": feed.get("title"),
        "link": feed.get("link"),
        "description": feed.get("description"),
        "version": parsed.get("version"),
    }
    return RawFeedDocument(url=url, entries=list(entries), feed_info=feed_info)


class HttpDocumentRetriever:
    """Retrieve feed documents over HTTP with a shared async client."""

    def __init__(
        self,
        user_agent: str,
        timeout_seconds: float = 10.0,
        follow_redirects: bool = True,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize retriever.

        Args:
            user_agent: User-Agent header for HTTP requests
            timeout_seconds: HTTP client timeout; the fetcher applies the overall limit per attempt
            follow_redirects: Whether redirects are followed
            client: Preconfigured client, mainly for tests
        """
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.follow_redirects = follow_redirects
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "HttpDocumentRetriever":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=self.follow_redirects,
                max_redirects=5,
                headers={"User-Agent": self.user_agent},
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def retrieve(self, url: str) -> RawFeedDocument:
        """Fetch and parse one feed.

        Raises:
            FetchTimeout: The HTTP client timed out
            FetchHttpError: Error status code
            FetchError: Network error
            FetchMalformed: Body is not a feed
        """
        if self._client is None:
            raise RuntimeError("HttpDocumentRetriever used outside of 'async with'")

        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Timeout: {e}", url=url) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise FetchHttpError(f"HTTP {status}", url=url, status_code=status) from e
        except httpx.RequestError as e:
            raise FetchError(f"Request error: {e}", url=url) from e

        return parse_feed_document(response.content, url)


@dataclass
class FetchResult:
    """Result of fetching one source: a document on success, an error otherwise."""

    success: bool
    topic: str
    source: SourceConfig
    document: Optional[RawFeedDocument] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    attempts: int = 0
    fetch_time_seconds: float = 0.0

    def __post_init__(self):
        """Validate fetch result."""
        if self.success and self.error:
            raise ValueError("Successful fetch cannot have an error")
        if self.success and self.document is None:
            raise ValueError("Successful fetch needs a document")
        if not self.success and not self.error:
            self.error = "Unknown error"

    @property
    def entries(self) -> list:
        return self.document.entries if self.document else []

    @property
    def source_label(self) -> str:
        return f"{self.topic}/{self.source.name}"


@dataclass
class FetchStats:
    """Statistics for feed fetching operations."""

    total_feeds: int = 0
    successful_fetches: int = 0
    failed_fetches: int = 0
    total_entries: int = 0
    total_time_seconds: float = 0.0
    errors_by_type: dict = field(default_factory=dict)

    def add_result(self, result: FetchResult) -> None:
        """Add a fetch result to statistics.

        Args:
            result: FetchResult to add
        """
        self.total_feeds += 1
        self.total_time_seconds += result.fetch_time_seconds

        if result.success:
            self.successful_fetches += 1
            self.total_entries += len(result.entries)
        else:
            self.failed_fetches += 1
            error_type = result.error_type or "unknown"
            self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + 1

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        if self.total_feeds == 0:
            return 0.0
        return self.successful_fetches / self.total_feeds

    @property
    def avg_time_seconds(self) -> float:
        """Calculate average fetch time."""
        if self.total_feeds == 0:
            return 0.0
        return self.total_time_seconds / self.total_feeds


def _is_retryable(error: Exception) -> bool:
    # Client errors (4xx) do not heal on retry
    return not (isinstance(error, FetchHttpError) and error.is_client_error)


class SourceFetcher:
    """Fetch feed sources with a per-attempt timeout and exponential backoff."""

    def __init__(
        self,
        retriever: DocumentRetriever,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize source fetcher.

        Args:
            retriever: Collaborator that fetches one document by URL
            timeout_seconds: Timeout for a single attempt
            max_attempts: Attempts per source before giving up
            backoff_base_seconds: Delay after the first failed attempt
            sleep: Awaitable sleep used between attempts
        """
        self.retriever = retriever
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.sleep = sleep
        self.stats = FetchStats()

    async def _attempt(self, url: str, timeout: float) -> RawFeedDocument:
        try:
            return await asyncio.wait_for(self.retriever.retrieve(url), timeout)
        except asyncio.TimeoutError as e:
            raise FetchTimeout(f"Timeout after {timeout:g}s", url=url) from e

    async def fetch(
        self,
        source: SourceConfig,
        topic: str,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> FetchResult:
        """Fetch a single source.

        Args:
            source: Source to fetch
            topic: Topic the source belongs to
            timeout: Override per-attempt timeout
            max_attempts: Override attempt budget

        Returns:
            FetchResult with a document or the last error
        """
        timeout = timeout or self.timeout_seconds
        max_attempts = max_attempts or self.max_attempts
        start_time = time.monotonic()
        attempts = 0

        async def operation() -> RawFeedDocument:
            nonlocal attempts
            attempts += 1
            return await self._attempt(source.url, timeout)

        logger.debug(f"Fetching {source.name} ({source.url})")

        try:
            document = await retry_with_backoff(
                operation,
                max_attempts=max_attempts,
                base_delay=self.backoff_base_seconds,
                should_retry=_is_retryable,
                sleep=self.sleep,
                label=f"fetch {source.name}",
            )
        except RetryExhausted as e:
            last_error = e.last_error
            error_message = str(last_error) or type(last_error).__name__
            result = FetchResult(
                success=False,
                topic=topic,
                source=source,
                error=error_message,
                error_type=type(last_error).__name__,
                attempts=attempts,
                fetch_time_seconds=time.monotonic() - start_time,
            )
            logger.error(f"Giving up on {source.name} after {attempts} attempt(s): {error_message}")
            self.stats.add_result(result)
            return result

        result = FetchResult(
            success=True,
            topic=topic,
            source=source,
            document=document,
            attempts=attempts,
            fetch_time_seconds=time.monotonic() - start_time,
        )
        logger.info(
            f"Fetched {len(document.entries)} entries from {source.name} "
            f"in {result.fetch_time_seconds:.2f}s"
        )
        self.stats.add_result(result)
        return result

    async def _safe_fetch(self, topic: TopicConfig, source: SourceConfig) -> FetchResult:
        try:
            return await self.fetch(source, topic.id)
        except Exception as e:
            logger.exception(f"Unexpected error fetching {source.url}: {e}")
            result = FetchResult(
                success=False,
                topic=topic.id,
                source=source,
                error=f"Unexpected error: {type(e).__name__}: {e}",
                error_type=type(e).__name__,
            )
            self.stats.add_result(result)
            return result

    async def fetch_many(self, topics: list[TopicConfig]) -> list[FetchResult]:
        """Fetch every source of the given topics concurrently.

        Args:
            topics: Topics whose sources are fetched

        Returns:
            One FetchResult per source, in configuration order
        """
        jobs = [
            self._safe_fetch(topic, source)
            for topic in topics
            for source in topic.sources
        ]
        logger.info(f"Fetching {len(jobs)} sources")
        return list(await asyncio.gather(*jobs))
