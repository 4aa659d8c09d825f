"""
Watermark persistence.

A watermark is the instant at or before which everything for a key (a topic,
or a single source within a topic) has already been delivered. Stores never
move a watermark backwards and hand out a look-back default for keys they
have never seen.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from news_relay.logger import get_logger
from news_relay.models import WatermarkModel
from news_relay.storage.database import DatabaseManager

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError(f"Watermark instant must be timezone-aware: {instant!r}")
    return instant.astimezone(timezone.utc)


class BaseWatermarkStore(ABC):
    """Default look-back and monotonic commit rules shared by all backends."""

    def __init__(
        self,
        default_lookback_minutes: int = 90,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the store.

        Args:
            default_lookback_minutes: Age of the watermark handed out for unknown keys
            clock: Returns the current aware time, overridable in tests
        """
        self.default_lookback = timedelta(minutes=default_lookback_minutes)
        self.clock = clock or utc_now

    def load(self, key: str) -> datetime:
        """Get the watermark for a key.

        Args:
            key: Watermark key

        Returns:
            Stored instant, or now minus the default look-back when absent
        """
        stored = self._read(key)
        if stored is None:
            default = self.clock() - self.default_lookback
            logger.debug(f"No watermark for {key}, using look-back default {default.isoformat()}")
            return default
        return stored

    def commit(self, key: str, instant: datetime) -> bool:
        """Advance the watermark for a key.

        An instant at or before the stored value is ignored.

        Args:
            key: Watermark key
            instant: New boundary, timezone-aware

        Returns:
            True if the stored value changed
        """
        instant = _as_utc(instant)
        current = self._read(key)
        if current is not None and instant <= current:
            if instant < current:
                logger.warning(
                    f"Ignoring watermark regression for {key}: "
                    f"{instant.isoformat()} < {current.isoformat()}"
                )
            return False

        self._write(key, instant)
        logger.debug(f"Watermark {key} -> {instant.isoformat()}")
        return True

    def snapshot(self) -> dict[str, datetime]:
        """Get all stored watermarks."""
        return dict(sorted(self._read_all().items()))

    def _read(self, key: str) -> Optional[datetime]:
        return self._read_all().get(key)

    @abstractmethod
    def _read_all(self) -> dict[str, datetime]:
        """Read every stored watermark as aware UTC datetimes."""

    @abstractmethod
    def _write(self, key: str, instant: datetime) -> None:
        """Persist one watermark."""


class JsonWatermarkStore(BaseWatermarkStore):
    """Watermarks kept as a JSON object mapping key to an ISO-8601 instant."""

    def __init__(self, path: str, **kwargs):
        super().__init__(**kwargs)
        self.path = Path(path)

    def _read_all(self) -> dict[str, datetime]:
        if not self.path.exists():
            return {}

        try:
            with self.path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            # Treated as a first run: redelivery is preferred over dropping items
            logger.warning(f"Unreadable watermark file {self.path}, starting fresh: {e}")
            return {}

        if not isinstance(raw, dict):
            logger.warning(f"Watermark file {self.path} is not a mapping, starting fresh")
            return {}

        watermarks = {}
        for key, value in raw.items():
            try:
                parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                watermarks[key] = parsed.astimezone(timezone.utc)
            except ValueError:
                logger.warning(f"Skipping invalid watermark {key}={value!r} in {self.path}")
        return watermarks

    def _write(self, key: str, instant: datetime) -> None:
        watermarks = self._read_all()
        watermarks[key] = instant
        payload = {k: v.isoformat() for k, v in sorted(watermarks.items())}

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class SqlWatermarkStore(BaseWatermarkStore):
    """Watermarks kept in the `watermarks` table of a SQLite database."""

    def __init__(self, db_manager: DatabaseManager, **kwargs):
        super().__init__(**kwargs)
        self.db_manager = db_manager
        self.db_manager.init_db()

    @staticmethod
    def _restore_zone(instant: datetime) -> datetime:
        # SQLite drops the offset; values are always written in UTC
        if instant.tzinfo is None:
            return instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(timezone.utc)

    def _read(self, key: str) -> Optional[datetime]:
        with self.db_manager.session() as session:
            row = session.get(WatermarkModel, key)
            return self._restore_zone(row.instant) if row else None

    def _read_all(self) -> dict[str, datetime]:
        with self.db_manager.session() as session:
            rows = session.query(WatermarkModel).all()
            return {row.key: self._restore_zone(row.instant) for row in rows}

    def _write(self, key: str, instant: datetime) -> None:
        with self.db_manager.session() as session:
            row = session.get(WatermarkModel, key)
            if row is None:
                session.add(WatermarkModel(key=key, instant=instant, updated_at=utc_now()))
            else:
                row.instant = instant
                row.updated_at = utc_now()
