"""
Article value object built fresh from fetched feed entries every run.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Article(BaseModel):
    """A single feed item, normalized and immutable."""

    model_config = ConfigDict(frozen=True)

    title: str
    link: str
    description: str = ""
    publish_time: datetime = Field(description="Timezone-aware, in the reference zone")
    source_id: str = Field(description="Watermark-safe key of the originating source")
    topic: str

    # Display-only fields used by message formatting
    source_name: str = ""
    emoji: str = ""

    @field_validator("publish_time")
    @classmethod
    def require_aware(cls, v: datetime) -> datetime:
        """Reject naive timestamps, comparisons need a fixed zone."""
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("publish_time must be timezone-aware")
        return v

    def __repr__(self) -> str:
        return f"<Article(topic='{self.topic}', source='{self.source_id}', title='{self.title[:40]}')>"
