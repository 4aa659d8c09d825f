"""
Watermark data model for the SQLite watermark backend.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from news_relay.models.base import Base


class WatermarkModel(Base):
    """SQLAlchemy ORM model for a stored watermark."""

    __tablename__ = "watermarks"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    instant: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<WatermarkModel(key='{self.key}', instant='{self.instant.isoformat()}')>"
