"""
Configuration management for news relay.

Uses Pydantic for validation and pydantic-settings for environment variable support.
Topics and their feed sources come from a YAML file; every other section can be
overridden from the environment.
"""

import re
from pathlib import Path
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from news_relay.exceptions import ConfigurationError

TOPIC_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
PLACEHOLDER_WEBHOOK_MARKER = "YOUR/WEBHOOK/URL"
DEFAULT_CONFIG_PATH = "config/news_relay.yaml"


def slugify(value: str) -> str:
    """Build a watermark-safe key from a display name."""
    slug = re.sub(r"[^\w]+", "-", value.strip().lower())
    return slug.strip("-_")


def check_timezone(name: str) -> str:
    """Raise ValueError unless the IANA zone name is known."""
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name!r}") from e
    return name


class SourceConfig(BaseModel):
    """A single feed source belonging to a topic."""

    name: str = Field(min_length=1, description="Display name")
    url: str = Field(min_length=1, description="Feed URL")
    key: Optional[str] = Field(default=None, description="Stable key used for watermarks")
    timezone: Optional[str] = Field(
        default=None,
        description="Zone used to interpret timestamps without an offset",
    )
    emoji: Optional[str] = Field(default=None, description="Per-source label, falls back to topic emoji")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return check_timezone(v) if v else v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate the feed URL scheme."""
        v = v.strip()
        if not v.startswith(("http://", "https://", "file://")):
            raise ValueError(f"Unsupported feed URL: {v!r}")
        return v

    @model_validator(mode="after")
    def fill_key(self) -> "SourceConfig":
        if not self.key:
            self.key = slugify(self.name) or slugify(self.url)
        return self


class TopicConfig(BaseModel):
    """A logical content category with its own feeds, destination and watermark."""

    id: str = Field(default="", description="Topic identifier, filled from the mapping key")
    name: str = Field(min_length=1, description="Display name")
    emoji: str = Field(default=":newspaper:", description="Label shown in messages")
    destination: Optional[str] = Field(default=None, description="Slack webhook URL")
    sources: list[SourceConfig] = Field(default_factory=list)

    @field_validator("sources")
    @classmethod
    def validate_sources(cls, v: list[SourceConfig]) -> list[SourceConfig]:
        """Reject topics without feeds and duplicate source keys."""
        if not v:
            raise ValueError("Topic must list at least one source")
        keys = [source.key for source in v]
        duplicates = {key for key in keys if keys.count(key) > 1}
        if duplicates:
            raise ValueError(f"Duplicate source keys: {sorted(duplicates)}")
        return v


class FetcherConfig(BaseSettings):
    """Feed retrieval configuration."""

    model_config = SettingsConfigDict(env_prefix="FETCHER_")

    timeout_seconds: float = Field(default=10.0, gt=0, le=300, description="Per-attempt timeout")
    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per source")
    backoff_base_seconds: float = Field(default=1.0, ge=0, description="First retry delay, doubled each attempt")
    user_agent: str = Field(
        default="News-Relay/0.1.0 (+https://github.com/news-relay)",
        description="User-Agent header",
    )
    follow_redirects: bool = Field(default=True)
    max_articles_per_source: int = Field(
        default=0, ge=0, le=1000,
        description="Deliver at most N new articles per source per run, oldest first; the rest wait (0=unlimited)"
    )


class WindowConfig(BaseSettings):
    """Freshness boundary configuration."""

    model_config = SettingsConfigDict(env_prefix="WINDOW_")

    policy: str = Field(default="watermark", description="Boundary policy: watermark or fixed")
    reference_timezone: str = Field(default="UTC", description="Zone all comparisons happen in")
    default_lookback_minutes: int = Field(
        default=90, ge=1,
        description="Watermark used when none has been stored yet"
    )
    window_start_minutes_ago: int = Field(default=60, ge=0, description="Fixed window start, minutes before now")
    window_end_minutes_ago: int = Field(default=0, ge=0, description="Fixed window end, minutes before now")

    @field_validator("policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        """Validate boundary policy."""
        v = v.lower().strip()
        if v not in ("watermark", "fixed"):
            raise ValueError(f"Invalid window policy: {v!r}. Must be 'watermark' or 'fixed'")
        return v

    @field_validator("reference_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the reference zone name."""
        return check_timezone(v)

    @model_validator(mode="after")
    def validate_window(self) -> "WindowConfig":
        if self.window_start_minutes_ago < self.window_end_minutes_ago:
            raise ValueError("window_start_minutes_ago must be >= window_end_minutes_ago")
        return self


class DeduplicatorConfig(BaseSettings):
    """Deduplication configuration."""

    model_config = SettingsConfigDict(env_prefix="DEDUP_")

    enabled: bool = Field(default=True, description="Enable near-duplicate title matching")

    # Similarity threshold (0.0 - 1.0), inclusive
    title_similarity_threshold: float = Field(
        default=0.75,
        ge=0.0,
        le=1.0,
        description="Title token overlap at or above which two articles are duplicates"
    )
    index: str = Field(default="linear", description="Title index: linear or inverted")

    @field_validator("index")
    @classmethod
    def validate_index(cls, v: str) -> str:
        """Validate title index name."""
        v = v.lower().strip()
        if v not in ("linear", "inverted"):
            raise ValueError(f"Invalid title index: {v!r}. Must be 'linear' or 'inverted'")
        return v


class DeliveryConfig(BaseSettings):
    """Slack delivery configuration."""

    model_config = SettingsConfigDict(env_prefix="DELIVERY_")

    default_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook used by topics without their own destination"
    )
    inter_call_delay_seconds: float = Field(
        default=1.0, ge=0,
        description="Pause between consecutive calls to the same destination"
    )
    timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    username: str = Field(default="News Relay", description="Bot display name")
    icon_emoji: str = Field(default=":newspaper:", description="Bot icon")
    max_articles_per_message: int = Field(default=20, ge=1, le=24)
    description_max_length: int = Field(default=80, ge=0, le=3000)
    button_text: str = Field(default="Read", min_length=1)


class WatermarkConfig(BaseSettings):
    """Watermark persistence configuration."""

    model_config = SettingsConfigDict(env_prefix="WATERMARK_")

    backend: str = Field(default="json", description="Storage backend: json or sqlite")
    scope: str = Field(default="source", description="Watermark granularity: source or topic")
    path: str = Field(default="data/last_check.json", description="JSON watermark file")
    database_path: str = Field(default="data/news_relay.db", description="SQLite database file")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate backend name."""
        v = v.lower().strip()
        if v not in ("json", "sqlite"):
            raise ValueError(f"Invalid watermark backend: {v!r}. Must be 'json' or 'sqlite'")
        return v

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        """Validate watermark scope."""
        v = v.lower().strip()
        if v not in ("source", "topic"):
            raise ValueError(f"Invalid watermark scope: {v!r}. Must be 'source' or 'topic'")
        return v


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        description="Log format"
    )

    # File logging
    file_enabled: bool = Field(default=False, description="Enable file logging")
    file_path: str = Field(default="logs/news_relay.log", description="Log file path")
    rotation: str = Field(default="10 MB", description="Log rotation size")
    retention: str = Field(default="14 days", description="Log retention period")

    # Console logging
    console_enabled: bool = Field(default=True, description="Enable console logging")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RELAY_",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="News Relay", description="Application name")
    schedule_interval_minutes: int = Field(default=60, ge=1, description="Interval for serve mode")

    # Sub-configurations
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    window: WindowConfig = Field(default_factory=WindowConfig)
    deduplicator: DeduplicatorConfig = Field(default_factory=DeduplicatorConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    watermark: WatermarkConfig = Field(default_factory=WatermarkConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    topics: dict[str, TopicConfig] = Field(default_factory=dict)

    @field_validator("topics")
    @classmethod
    def validate_topics(cls, v: dict[str, TopicConfig]) -> dict[str, TopicConfig]:
        """Validate topic identifiers and bind each topic to its key."""
        bound = {}
        for topic_id, topic in v.items():
            if not TOPIC_ID_PATTERN.match(topic_id):
                raise ValueError(
                    f"Invalid topic id: {topic_id!r}. Use lowercase letters, digits, '-' or '_'"
                )
            bound[topic_id] = topic.model_copy(update={"id": topic_id})
        return bound

    @property
    def topic_ids(self) -> frozenset[str]:
        """All configured topic identifiers."""
        return frozenset(self.topics)

    def resolve_topics(self, requested: Optional[Iterable[str]] = None) -> list[TopicConfig]:
        """Resolve the topics for a run, with destinations filled in.

        Args:
            requested: Topic ids to run; all configured topics when empty

        Returns:
            Topics in configuration order

        Raises:
            ConfigurationError: Unknown topic or missing destination
        """
        if not self.topics:
            raise ConfigurationError("No topics configured")

        wanted = list(requested or [])
        unknown = [topic_id for topic_id in wanted if topic_id not in self.topics]
        if unknown:
            raise ConfigurationError(
                f"Unknown topic(s): {', '.join(unknown)}. "
                f"Configured: {', '.join(sorted(self.topics))}"
            )

        resolved = []
        for topic_id, topic in self.topics.items():
            if wanted and topic_id not in wanted:
                continue
            destination = topic.destination or self.delivery.default_webhook_url
            if not destination or PLACEHOLDER_WEBHOOK_MARKER in destination:
                raise ConfigurationError(
                    f"Topic {topic_id!r} has no delivery destination. "
                    "Set 'destination' in the topic or DELIVERY_DEFAULT_WEBHOOK_URL"
                )
            resolved.append(topic.model_copy(update={"destination": destination}))
        return resolved


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = reload_config()
    return _config


def set_config(config: Optional[Config]) -> None:
    """Replace the global configuration instance."""
    global _config
    _config = config


_NESTED_CONFIGS = {
    "fetcher": FetcherConfig,
    "window": WindowConfig,
    "deduplicator": DeduplicatorConfig,
    "delivery": DeliveryConfig,
    "watermark": WatermarkConfig,
    "logging": LoggingConfig,
}


def load_config_from_yaml(yaml_path: str) -> Config:
    """Load configuration from a YAML file.

    Note: Values loaded from YAML take precedence over environment variables.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        Config instance loaded from the file.

    Raises:
        ConfigurationError: File missing or content invalid
    """
    import yaml

    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise ConfigurationError(f"Configuration file not found: {yaml_path}")

    try:
        with yaml_file.open("r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {yaml_path}: {e}") from e

    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {yaml_path}")

    # Nested sections are built separately so env vars still fill unset keys
    main_config = {}
    nested_configs = {}
    for key, value in config_dict.items():
        if key in _NESTED_CONFIGS:
            nested_configs[key] = value or {}
        else:
            main_config[key] = value

    try:
        for key, config_class in _NESTED_CONFIGS.items():
            main_config[key] = config_class(**nested_configs.get(key, {}))
        return Config(**main_config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {yaml_path}:\n{e}") from e


def reload_config(yaml_path: Optional[str] = None) -> Config:
    """Reload configuration from environment and YAML files."""
    global _config

    path = Path(yaml_path or DEFAULT_CONFIG_PATH)
    if yaml_path or path.exists():
        _config = load_config_from_yaml(str(path))
    else:
        try:
            _config = Config()
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration:\n{e}") from e

    return _config
