"""
Duplicate resolution across sources.

Two filters run in one ordered scan over newest-first candidates, and the
earliest candidate always wins:

1. exact match on the dedup key (normalized title + link)
2. near-duplicate match on title token overlap
   |A & B| / max(|A|, |B|) >= threshold

Titles that produce no tokens never match anything.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from news_relay.logger import get_logger
from news_relay.models import Article

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")
# \w is Unicode aware, so Hangul, CJK and accented letters survive
_NON_ALNUM = re.compile(r"[\W_]+")


def normalize_title_text(title: str) -> str:
    """Lowercase a title and collapse its whitespace."""
    return _WHITESPACE.sub(" ", (title or "").strip()).lower()


def dedup_key(article: Article) -> str:
    """Exact-match key of an article: normalized title joined with its link."""
    return f"{normalize_title_text(article.title)}|{article.link.strip()}"


def title_tokens(title: str) -> frozenset[str]:
    """Set of title tokens longer than one character."""
    cleaned = _NON_ALNUM.sub(" ", normalize_title_text(title))
    return frozenset(token for token in cleaned.split() if len(token) > 1)


def title_similarity(a: frozenset[str], b: frozenset[str]) -> float:
    """Share of tokens in common, relative to the larger token set."""
    if not a or not b:
        return 0.0
    return len(a & b) / max(len(a), len(b))


class TitleIndex(ABC):
    """Accepted titles a new candidate has to be compared against."""

    @abstractmethod
    def add(self, tokens: frozenset[str]) -> None:
        """Register the tokens of an accepted title."""

    @abstractmethod
    def candidates(self, tokens: frozenset[str]) -> Iterator[frozenset[str]]:
        """Yield accepted token sets that could be similar, in acceptance order."""


class LinearTitleIndex(TitleIndex):
    """Compare against every accepted title."""

    def __init__(self):
        self._accepted: list[frozenset[str]] = []

    def add(self, tokens: frozenset[str]) -> None:
        self._accepted.append(tokens)

    def candidates(self, tokens: frozenset[str]) -> Iterator[frozenset[str]]:
        return iter(self._accepted)


class InvertedTitleIndex(TitleIndex):
    """Compare only against accepted titles sharing at least one token.

    Titles without a shared token have similarity 0, so skipping them keeps
    results identical to the linear index.
    """

    def __init__(self):
        self._accepted: list[frozenset[str]] = []
        self._postings: dict[str, list[int]] = {}

    def add(self, tokens: frozenset[str]) -> None:
        position = len(self._accepted)
        self._accepted.append(tokens)
        for token in tokens:
            self._postings.setdefault(token, []).append(position)

    def candidates(self, tokens: frozenset[str]) -> Iterator[frozenset[str]]:
        positions = set()
        for token in tokens:
            positions.update(self._postings.get(token, ()))
        for position in sorted(positions):
            yield self._accepted[position]


TITLE_INDEXES = {
    "linear": LinearTitleIndex,
    "inverted": InvertedTitleIndex,
}


@dataclass
class DedupResult:
    """Surviving articles and what was dropped."""

    articles: list[Article] = field(default_factory=list)
    exact_duplicates: list[Article] = field(default_factory=list)
    near_duplicates: list[Article] = field(default_factory=list)

    @property
    def dropped_count(self) -> int:
        return len(self.exact_duplicates) + len(self.near_duplicates)


class Deduplicator:
    """Remove exact and near-duplicate articles from a newest-first list."""

    def __init__(
        self,
        threshold: float = 0.75,
        index: str = "linear",
        near_duplicates: bool = True,
    ):
        """Initialize deduplicator.

        Args:
            threshold: Title similarity at or above which candidates collapse
            index: Title index strategy, "linear" or "inverted"
            near_duplicates: Whether the title similarity stage runs
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Similarity threshold must be within [0, 1]: {threshold}")
        if index not in TITLE_INDEXES:
            raise ValueError(f"Unknown title index: {index!r}")

        self.threshold = threshold
        self.index = index
        self.near_duplicates = near_duplicates

    def _is_near_duplicate(self, tokens: frozenset[str], title_index: TitleIndex) -> bool:
        if not tokens:
            return False
        return any(
            title_similarity(tokens, accepted) >= self.threshold
            for accepted in title_index.candidates(tokens)
        )

    def dedupe(self, candidates: Iterable[Article]) -> DedupResult:
        """Drop duplicates, keeping the first occurrence in scan order.

        Args:
            candidates: Articles sorted newest-first

        Returns:
            DedupResult with survivors in input order
        """
        result = DedupResult()
        seen_keys: set[str] = set()
        title_index = TITLE_INDEXES[self.index]()

        for article in candidates:
            key = dedup_key(article)
            if key in seen_keys:
                result.exact_duplicates.append(article)
                logger.debug(f"Exact duplicate dropped: {article.title} ({article.source_id})")
                continue

            tokens = title_tokens(article.title)
            if self.near_duplicates and self._is_near_duplicate(tokens, title_index):
                result.near_duplicates.append(article)
                logger.debug(f"Near duplicate dropped: {article.title} ({article.source_id})")
                continue

            seen_keys.add(key)
            title_index.add(tokens)
            result.articles.append(article)

        if result.dropped_count:
            logger.info(
                f"Dropped {len(result.exact_duplicates)} exact and "
                f"{len(result.near_duplicates)} near duplicates, {len(result.articles)} left"
            )
        return result
