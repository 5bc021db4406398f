"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from btc_dashboard.services.config import (
    AppSettings,
    ConfigService,
    ConfigValidationException,
)


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return ConfigService(str(path))


class TestLoadAndValidate:
    """Tests for YAML loading and schema validation."""

    def test_missing_file_uses_defaults(self, tmp_path):
        service = ConfigService(str(tmp_path / "absent.yaml"))

        assert service.load_and_validate() == {}
        assert service.get_settings() == AppSettings()

    def test_empty_file(self, tmp_path):
        service = write_config(tmp_path, "")

        assert service.load_and_validate() == {}

    def test_valid_config(self, tmp_path):
        service = write_config(tmp_path, """
server:
  port: 8080
logging:
  level: DEBUG
scheduler:
  market_interval_seconds: 15
providers:
  failure_threshold: 5
  priorities:
    market: [binance, coingecko]
  adapters:
    coingecko:
      rate_limit_delay_seconds: 2.5
      max_retries: 4
""")
        config = service.load_and_validate()

        assert config["server"]["port"] == 8080
        assert service.get("providers.priorities.market") == ["binance", "coingecko"]
        assert service.get("providers.nope", "fallback") == "fallback"

    def test_example_config_is_valid(self):
        example = Path(__file__).resolve().parent.parent / "config.example.yaml"
        service = ConfigService(str(example))

        service.load_and_validate()

        assert service.get_settings() == AppSettings()

    def test_invalid_yaml(self, tmp_path):
        service = write_config(tmp_path, "server: [unclosed")

        with pytest.raises(ConfigValidationException) as exc_info:
            service.load_and_validate()

        assert "Invalid YAML" in exc_info.value.errors[0].message

    def test_non_mapping_root(self, tmp_path):
        service = write_config(tmp_path, "- a\n- b\n")

        with pytest.raises(ConfigValidationException):
            service.load_and_validate()

    @pytest.mark.parametrize("text,path", [
        ("server:\n  port: 0\n", "server.port"),
        ("server:\n  port: '80'\n", "server.port"),
        ("logging:\n  level: LOUD\n", "logging.level"),
        ("scheduler:\n  market_interval_seconds: true\n", "scheduler.market_interval_seconds"),
        ("cache:\n  max_history_size: 0\n", "cache.max_history_size"),
        ("providers:\n  priorities:\n    market: [kraken]\n", "providers.priorities.market"),
        ("providers:\n  priorities:\n    ohlc: []\n", "providers.priorities.ohlc"),
        ("providers:\n  adapters:\n    binance:\n      max_retries: 50\n", "providers.adapters.binance.max_retries"),
        ("bogus: 1\n", "bogus"),
    ])
    def test_invalid_values(self, tmp_path, text, path):
        service = write_config(tmp_path, text)

        with pytest.raises(ConfigValidationException) as exc_info:
            service.load_and_validate()

        assert path in [e.path for e in exc_info.value.errors]


class TestSettings:
    """Tests for typed settings built from the configuration."""

    def test_defaults(self):
        settings = AppSettings()

        assert settings.port == 3001
        assert settings.scheduler.market_interval_seconds == 30.0
        assert settings.scheduler.ohlc_interval_seconds == 60.0
        assert settings.scheduler.blockchain_interval_seconds == 120.0
        assert settings.scheduler.supply_interval_seconds == 300.0
        assert settings.scheduler.global_interval_seconds == 300.0
        assert settings.cache.max_history_size == 100
        assert settings.providers.failure_threshold == 3
        assert settings.providers.priorities["market"] == ["coingecko", "coincap", "binance"]
        assert settings.providers.adapters["coincap"].rate_limit_delay_seconds == 0.2

    def test_overrides_merge_with_defaults(self, tmp_path):
        service = write_config(tmp_path, """
scheduler:
  ohlc_interval_seconds: 90
cache:
  max_history_size: 10
websocket:
  rebroadcast_interval_seconds: 30
providers:
  priorities:
    market: [binance]
  adapters:
    coingecko:
      rate_limit_delay_seconds: 2
""")
        service.load_and_validate()

        settings = service.get_settings()

        assert settings.scheduler.ohlc_interval_seconds == 90.0
        assert settings.scheduler.market_interval_seconds == 30.0
        assert settings.cache.max_history_size == 10
        assert settings.rebroadcast_interval_seconds == 30.0
        assert settings.providers.priorities["market"] == ["binance"]
        assert settings.providers.priorities["ohlc"] == ["coingecko", "binance"]
        assert settings.providers.adapters["coingecko"].rate_limit_delay_seconds == 2.0
        assert settings.providers.adapters["coingecko"].max_retries == 3
        assert settings.providers.adapters["binance"].rate_limit_delay_seconds == 0.1
