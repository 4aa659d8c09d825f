"""
Content parser turning raw feed entries into articles.

Handles field standardization, HTML cleaning and time zone normalized
publish time parsing.
"""

import re
import time
from datetime import datetime, timezone, tzinfo
from email.utils import parsedate_to_datetime
from html import unescape
from typing import Optional
from zoneinfo import ZoneInfo

from bs4 import BeautifulSoup
from feedparser.datetimes import _parse_date as feedparser_parse_date

from news_relay.config import SourceConfig
from news_relay.exceptions import ParseError
from news_relay.models import Article

# Raw entry keys holding a publish time, in order of preference
DATE_FIELDS = ("published", "pubDate", "updated", "created", "date")
PARSED_DATE_FIELDS = ("published_parsed", "updated_parsed", "created_parsed")

DATE_FORMATS = [
    # ISO 8601 formats
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    # RFC 2822 variants with named zones
    "%a, %d %b %Y %H:%M:%S %Z",
    "%a, %d %b %Y %H:%M %z",
    # Common formats
    "%Y.%m.%d %H:%M:%S",
    "%Y.%m.%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%d",
]


def _text(value) -> str:
    """Extract text from a raw field that may be a string, list or dict."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return _text(value[0]) if value else ""
    if isinstance(value, dict):
        return _text(value.get("value") or value.get("href") or value.get("_"))
    return str(value)


def strip_html(html: str) -> str:
    """Strip HTML tags and collapse whitespace."""
    if not html:
        return ""
    if "<" not in html:
        return re.sub(r"\s+", " ", unescape(html)).strip()

    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "noscript"]):
        element.decompose()
    text = soup.get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()


def normalize_title(title: Optional[str]) -> str:
    """Unescape entities, drop markup and collapse whitespace."""
    if not title:
        return ""
    return strip_html(unescape(title))


def _parse_datetime_string(value: str) -> Optional[datetime]:
    value = value.strip()
    if not value:
        return None

    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        pass

    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue

    # feedparser's own handlers cover many legacy formats and return UTC
    parsed = feedparser_parse_date(value)
    if parsed:
        return datetime(*parsed[:6], tzinfo=timezone.utc)

    return None


def parse_timestamp(value, source_zone: tzinfo, reference_zone: tzinfo) -> datetime:
    """Parse a raw timestamp into an aware datetime in the reference zone.

    Args:
        value: String, datetime or time.struct_time (UTC, as feedparser produces)
        source_zone: Zone assumed for values without an offset
        reference_zone: Zone the result is expressed in

    Returns:
        Timezone-aware datetime

    Raises:
        ParseError: Value is missing or not understood
    """
    if value is None or value == "":
        raise ParseError("Missing publish time")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, time.struct_time):
        parsed = datetime(*value[:6], tzinfo=timezone.utc)
    else:
        parsed = _parse_datetime_string(_text(value))
        if parsed is None:
            raise ParseError(f"Unparseable publish time: {value!r}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        parsed = parsed.replace(tzinfo=source_zone)

    return parsed.astimezone(reference_zone)


class ContentParser:
    """Parser for normalizing raw feed entries into articles."""

    def __init__(self, reference_timezone: str = "UTC"):
        """Initialize content parser.

        Args:
            reference_timezone: Zone every publish time is converted to
        """
        self.reference_timezone = reference_timezone
        self.reference_zone = ZoneInfo(reference_timezone)
        self._zones: dict[str, tzinfo] = {}

    def _zone_for(self, source: SourceConfig) -> tzinfo:
        if not source.timezone:
            return self.reference_zone
        if source.timezone not in self._zones:
            self._zones[source.timezone] = ZoneInfo(source.timezone)
        return self._zones[source.timezone]

    def _raw_publish_time(self, raw_entry: dict):
        for key in DATE_FIELDS:
            value = raw_entry.get(key)
            if value:
                return value
        # Pre-parsed struct_time values are UTC but lose naive-vs-aware information
        for key in PARSED_DATE_FIELDS:
            value = raw_entry.get(key)
            if value:
                return value
        return None

    def parse_entry(self, raw_entry: dict, source: SourceConfig, topic: str, emoji: str = "") -> Article:
        """Parse and normalize a raw feed entry.

        Args:
            raw_entry: Raw entry from feedparser
            source: Source the entry came from
            topic: Topic the source belongs to
            emoji: Topic label, used when the source has none

        Returns:
            Article

        Raises:
            ParseError: Entry has no usable publish time, title or link
        """
        title = normalize_title(_text(raw_entry.get("title")))
        link = _text(raw_entry.get("link")).strip()
        if not title and not link:
            raise ParseError("Entry has neither title nor link")

        description = strip_html(
            _text(raw_entry.get("description") or raw_entry.get("summary"))
        )
        publish_time = parse_timestamp(
            self._raw_publish_time(raw_entry),
            source_zone=self._zone_for(source),
            reference_zone=self.reference_zone,
        )

        return Article(
            title=title,
            link=link,
            description=description,
            publish_time=publish_time,
            source_id=source.key,
            topic=topic,
            source_name=source.name,
            emoji=source.emoji or emoji,
        )


def create_parser(reference_timezone: str = "UTC") -> ContentParser:
    """Create a configured ContentParser instance.

    Args:
        reference_timezone: Zone publish times are normalized to

    Returns:
        Configured ContentParser instance
    """
    return ContentParser(reference_timezone=reference_timezone)
