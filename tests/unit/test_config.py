"""Unit tests for configuration."""

import pytest
from pydantic import ValidationError

from conftest import WEBHOOK, make_config, make_source, make_topic
from news_relay.config import (
    Config,
    DeliveryConfig,
    SourceConfig,
    TopicConfig,
    WindowConfig,
    get_config,
    load_config_from_yaml,
    reload_config,
    slugify,
)
from news_relay.exceptions import ConfigurationError

YAML_CONFIG = """
fetcher:
  timeout_seconds: 5
  max_articles_per_source: 5
window:
  reference_timezone: Asia/Seoul
delivery:
  default_webhook_url: https://hooks.slack.com/services/T0/B0/default
topics:
  economy:
    name: 경제뉴스
    emoji: ":chart_with_upwards_trend:"
    sources:
      - name: 매일경제
        key: mk
        url: https://www.mk.co.kr/rss/30000001/
        emoji: 📊
      - name: 한국경제
        url: https://www.hankyung.com/feed/all-news
  tech:
    name: Tech
    destination: https://hooks.slack.com/services/T0/B0/tech
    sources:
      - name: Tech Daily
        url: https://tech.example.com/rss
"""


class TestSourceConfig:
    """Tests for SourceConfig."""

    def test_key_from_name(self):
        """Test that the watermark key defaults to a slug of the name."""
        assert SourceConfig(name="Tech Daily", url="https://e.com/rss").key == "tech-daily"
        assert SourceConfig(name="한국경제", url="https://e.com/rss").key == "한국경제"

    def test_explicit_key(self):
        assert SourceConfig(name="Tech Daily", key="td", url="https://e.com/rss").key == "td"

    def test_invalid_url(self):
        """Test that non-HTTP URLs are rejected."""
        with pytest.raises(ValidationError):
            SourceConfig(name="Bad", url="ftp://e.com/rss")

    def test_unknown_source_timezone(self):
        """Test that a bad source zone is rejected at load time, not during a run."""
        with pytest.raises(ValidationError):
            SourceConfig(name="Mars Daily", url="https://e.com/rss", timezone="Mars/Olympus")

        assert SourceConfig(name="Seoul", url="https://e.com/rss", timezone="Asia/Seoul").timezone == "Asia/Seoul"

    def test_slugify(self):
        assert slugify("  Hello, World! ") == "hello-world"


class TestTopicConfig:
    """Tests for TopicConfig."""

    def test_requires_sources(self):
        with pytest.raises(ValidationError):
            TopicConfig(name="Empty", sources=[])

    def test_duplicate_source_keys(self):
        """Test that two sources cannot share a watermark key."""
        with pytest.raises(ValidationError):
            TopicConfig(
                name="Dup",
                sources=[
                    SourceConfig(name="A", key="x", url="https://a.com/rss"),
                    SourceConfig(name="B", key="x", url="https://b.com/rss"),
                ],
            )


class TestSectionConfigs:
    """Tests for section validation."""

    def test_window_policy(self):
        assert WindowConfig(policy="FIXED").policy == "fixed"
        with pytest.raises(ValidationError):
            WindowConfig(policy="sliding")

    def test_window_order(self):
        """Test that the fixed window start must not be after its end."""
        with pytest.raises(ValidationError):
            WindowConfig(window_start_minutes_ago=10, window_end_minutes_ago=20)

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            WindowConfig(reference_timezone="Mars/Olympus")

    def test_message_size_limit(self):
        with pytest.raises(ValidationError):
            DeliveryConfig(max_articles_per_message=40)

    def test_env_override(self, monkeypatch):
        """Test that sections read their environment prefix."""
        monkeypatch.setenv("DEDUP_TITLE_SIMILARITY_THRESHOLD", "0.8")
        monkeypatch.setenv("WINDOW_DEFAULT_LOOKBACK_MINUTES", "30")

        config = Config()

        assert config.deduplicator.title_similarity_threshold == 0.8
        assert config.window.default_lookback_minutes == 30


class TestConfig:
    """Tests for Config and topic resolution."""

    def test_topic_ids_bound(self):
        """Test that topics take their id from the mapping key."""
        config = Config(topics={"economy": {"name": "Economy", "sources": [{"name": "A", "url": "https://a.com/rss"}]}})

        assert config.topics["economy"].id == "economy"
        assert config.topic_ids == frozenset({"economy"})

    def test_invalid_topic_id(self):
        with pytest.raises(ValidationError):
            Config(topics={"Bad Id": {"name": "X", "sources": [{"name": "A", "url": "https://a.com/rss"}]}})

    def test_resolve_all_in_order(self):
        """Test resolving every topic in configuration order."""
        config = make_config(
            [make_topic([make_source()], topic_id="tech"), make_topic([make_source()], topic_id="economy")]
        )

        assert [t.id for t in config.resolve_topics()] == ["tech", "economy"]

    def test_resolve_subset(self):
        config = make_config(
            [make_topic([make_source()], topic_id="tech"), make_topic([make_source()], topic_id="economy")]
        )

        assert [t.id for t in config.resolve_topics(["economy"])] == ["economy"]

    def test_unknown_topic(self):
        """Test that an unconfigured topic is a configuration error."""
        config = make_config([make_topic([make_source()])])

        with pytest.raises(ConfigurationError, match="sports"):
            config.resolve_topics(["sports"])

    def test_no_topics(self):
        with pytest.raises(ConfigurationError):
            Config().resolve_topics()

    def test_default_destination(self):
        """Test that the default webhook fills missing destinations."""
        config = make_config(
            [make_topic([make_source()], destination=None)],
            delivery=DeliveryConfig(default_webhook_url=WEBHOOK),
        )

        assert config.resolve_topics()[0].destination == WEBHOOK
        # The configured topic itself is not modified
        assert config.topics["economy"].destination is None

    @pytest.mark.parametrize("destination", [None, "https://hooks.slack.com/services/YOUR/WEBHOOK/URL"])
    def test_missing_destination(self, destination):
        """Test that a missing or placeholder destination is rejected."""
        config = make_config([make_topic([make_source()], destination=destination)])

        with pytest.raises(ConfigurationError):
            config.resolve_topics()


class TestYamlLoading:
    """Tests for YAML configuration files."""

    def test_load(self, tmp_path):
        """Test loading a complete file."""
        path = tmp_path / "relay.yaml"
        path.write_text(YAML_CONFIG, encoding="utf-8")

        config = load_config_from_yaml(str(path))

        assert config.fetcher.timeout_seconds == 5
        assert config.fetcher.max_articles_per_source == 5
        assert config.window.reference_timezone == "Asia/Seoul"
        assert list(config.topics) == ["economy", "tech"]
        assert [s.key for s in config.topics["economy"].sources] == ["mk", "한국경제"]

        resolved = {t.id: t.destination for t in config.resolve_topics()}
        assert resolved == {
            "economy": "https://hooks.slack.com/services/T0/B0/default",
            "tech": "https://hooks.slack.com/services/T0/B0/tech",
        }

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config_from_yaml(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("topics: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_config_from_yaml(str(path))

    def test_invalid_values(self, tmp_path):
        """Test that validation errors become configuration errors."""
        path = tmp_path / "bad.yaml"
        path.write_text("fetcher:\n  max_attempts: 0\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_config_from_yaml(str(path))

    def test_unknown_source_timezone(self, tmp_path):
        """Test that a bad source zone in YAML is a configuration error."""
        path = tmp_path / "bad.yaml"
        path.write_text(
            "topics:\n  economy:\n    name: Economy\n    sources:\n"
            "      - name: A\n        url: https://a.com/rss\n        timezone: Mars/Olympus\n",
            encoding="utf-8",
        )

        with pytest.raises(ConfigurationError, match="Mars/Olympus"):
            load_config_from_yaml(str(path))

    def test_reload_sets_global(self, tmp_path):
        """Test that reload_config replaces the global instance."""
        path = tmp_path / "relay.yaml"
        path.write_text(YAML_CONFIG, encoding="utf-8")

        config = reload_config(str(path))

        assert get_config() is config
