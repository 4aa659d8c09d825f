"""Storage layer modules for news relay."""

from news_relay.storage.database import DatabaseManager
from news_relay.storage.watermark_store import (
    BaseWatermarkStore,
    JsonWatermarkStore,
    SqlWatermarkStore,
)

__all__ = [
    "DatabaseManager",
    "BaseWatermarkStore",
    "JsonWatermarkStore",
    "SqlWatermarkStore",
]
