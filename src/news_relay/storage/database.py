"""
Database connection and session management for the SQLite watermark backend.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from news_relay.models import Base


class DatabaseManager:
    """Database manager for context-managed database operations."""

    def __init__(self, db_path: str, echo: bool = False):
        """Initialize database manager.

        Args:
            db_path: SQLite file path, ":memory:" or a full sqlite:// URL
            echo: Echo SQL statements
        """
        self.db_path = db_path
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def build_url(self) -> str:
        """Build SQLite database URL.

        Note:
            - path: "data/news_relay.db" -> "sqlite:///data/news_relay.db"
            - path: "sqlite:///data/news_relay.db" -> unchanged
        """
        if self.db_path.startswith("sqlite://"):
            return self.db_path

        if self.db_path == ":memory:":
            return "sqlite://"

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{self.db_path}"

    @property
    def engine(self) -> Engine:
        """Get the database engine."""
        if self._engine is None:
            url = self.build_url()
            engine_kwargs: dict = {
                "echo": self.echo,
                "connect_args": {
                    "check_same_thread": False,  # Scheduler jobs run on worker threads
                    "timeout": 30,
                },
            }
            if url == "sqlite://":
                # In-memory databases live only as long as their connection
                engine_kwargs["poolclass"] = StaticPool

            self._engine = create_engine(url, **engine_kwargs)

            @event.listens_for(self._engine, "connect")
            def set_sqlite_pragma(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.close()

        return self._engine

    def init_db(self, drop_all: bool = False) -> None:
        """Initialize database tables.

        Args:
            drop_all: If True, drop existing tables first
        """
        if drop_all:
            Base.metadata.drop_all(bind=self.engine)

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Get a database session.

        Commits on success, rolls back on error.

        Yields:
            SQLAlchemy Session instance
        """
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                autocommit=False,
                autoflush=False,
                bind=self.engine,
            )
        session = self._session_factory()

        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None

    def __enter__(self) -> "DatabaseManager":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
