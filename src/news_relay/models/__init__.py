"""Data models for news relay."""

from news_relay.models.article import Article
from news_relay.models.base import Base
from news_relay.models.watermark import WatermarkModel

__all__ = [
    "Article",
    "Base",
    "WatermarkModel",
]
