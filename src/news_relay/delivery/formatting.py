"""
Slack block-kit rendering of topic batches.
"""

from news_relay.config import TopicConfig
from news_relay.core.parser import strip_html
from news_relay.models import Article

# Slack rejects messages with more than 50 blocks
MAX_BLOCKS_PER_MESSAGE = 50
SECTION_TEXT_LIMIT = 3000


def truncate(text: str, max_length: int) -> str:
    """Cut text to max_length characters, marking the cut with '...'."""
    if max_length <= 0:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + "..."


class SlackMessageFormatter:
    """Render a topic's articles as one or more Slack webhook payloads."""

    def __init__(
        self,
        username: str = "News Relay",
        icon_emoji: str = ":newspaper:",
        max_articles_per_message: int = 20,
        description_max_length: int = 80,
        button_text: str = "Read",
    ):
        # header + divider + (section + divider) per article, minus the last divider
        if 2 + 2 * max_articles_per_message - 1 > MAX_BLOCKS_PER_MESSAGE:
            raise ValueError(f"Too many articles per message: {max_articles_per_message}")

        self.username = username
        self.icon_emoji = icon_emoji
        self.max_articles_per_message = max_articles_per_message
        self.description_max_length = description_max_length
        self.button_text = button_text

    def _header_text(self, topic: TopicConfig, count: int, part: int, parts: int) -> str:
        text = f"{topic.emoji} {topic.name}: {count} new article{'s' if count != 1 else ''}"
        if parts > 1:
            text += f" ({part}/{parts})"
        return text

    def _article_block(self, article: Article, index: int) -> dict:
        description = truncate(strip_html(article.description), self.description_max_length)
        label = f"{article.emoji} " if article.emoji else ""
        text = f"{label}*{article.title}*"
        if article.source_name:
            text += f"  _{article.source_name}_"
        if description:
            text += f"\n{description}"

        block = {
            "type": "section",
            "text": {"type": "mrkdwn", "text": truncate(text, SECTION_TEXT_LIMIT - 3)},
        }
        if article.link:
            block["accessory"] = {
                "type": "button",
                "text": {"type": "plain_text", "text": self.button_text},
                "url": article.link,
                "action_id": f"read_article_{index}",
            }
        return block

    def format(self, topic: TopicConfig, articles: list[Article]) -> list[dict]:
        """Build the payloads for one topic batch.

        Args:
            topic: Topic the batch belongs to
            articles: Articles in delivery order

        Returns:
            Payloads in order, empty for an empty batch
        """
        if not articles:
            return []

        size = self.max_articles_per_message
        chunks = [articles[i : i + size] for i in range(0, len(articles), size)]
        payloads = []

        for part, chunk in enumerate(chunks, start=1):
            header = self._header_text(topic, len(articles), part, len(chunks))
            blocks: list[dict] = [
                {"type": "header", "text": {"type": "plain_text", "text": truncate(header, 147)}},
                {"type": "divider"},
            ]
            for offset, article in enumerate(chunk):
                if offset:
                    blocks.append({"type": "divider"})
                blocks.append(self._article_block(article, (part - 1) * size + offset))

            payloads.append(
                {
                    "username": self.username,
                    "icon_emoji": self.icon_emoji,
                    # Fallback for notifications and clients without block support
                    "text": header,
                    "blocks": blocks,
                }
            )

        return payloads
