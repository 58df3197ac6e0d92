"""Unit tests for configuration management."""

import pytest
import yaml

from aha_smt.fetcher.errors import ConfigurationError
from aha_smt.models.config import AhaConfig, ConfigManager


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in (
        "AHA_DOMAIN",
        "AHA_API_TOKEN",
        "AHA_BASE_URL",
        "CACHE_TTL_SECONDS",
        "AHA_RATE_LIMIT_BURST",
        "AHA_RATE_LIMIT_RPS",
        "AHA_LOG_LEVEL",
        "AHA_CONNECT_TIMEOUT",
        "AHA_READ_TIMEOUT",
    ):
        monkeypatch.delenv(var, raising=False)


def test_config_defaults():
    """Test that AhaConfig has correct default values."""
    config = AhaConfig()

    # Cache
    assert config.cache_ttl_seconds == 60.0
    assert config.cache_stale_multiplier == 5.0

    # Rate limiting: 20 req/sec burst, 300 req/min sustained
    assert config.rate_limit_burst == 20
    assert config.rate_limit_refill_per_second == 20.0
    assert config.rate_limit_sustained == 300
    assert config.rate_limit_sustained_per_second == 5.0

    # Retry policy
    assert config.max_retries == 3
    assert config.retry_base_delay == 0.5
    assert config.retry_max_delay == 4.0
    assert config.retryable_status_codes == [429, 502, 503, 504]

    # Timeouts
    assert config.connect_timeout == 3.0
    assert config.read_timeout == 8.0


def test_urls_from_domain():
    config = AhaConfig(aha_domain="acme")

    assert config.api_base_url == "https://acme.aha.io/api/v1"
    assert config.graphql_url == "https://acme.aha.io/api/v2/graphql"


def test_urls_from_base_url_override():
    config = AhaConfig(base_url="http://localhost:8001/api/v1/")

    assert config.api_base_url == "http://localhost:8001/api/v1"
    assert config.graphql_url == "http://localhost:8001/api/v2/graphql"


def test_base_url_validation():
    with pytest.raises(ValueError, match="must start with http"):
        AhaConfig(base_url="ftp://invalid.com")


@pytest.mark.parametrize("field", ["rate_limit_refill_per_second", "rate_limit_sustained_per_second"])
@pytest.mark.parametrize("value", [0, -1.0])
def test_non_positive_refill_rate_rejected(field, value):
    with pytest.raises(ValueError, match="refill rate must be positive"):
        AhaConfig(**{field: value})


def test_zero_burst_rejected():
    with pytest.raises(ValueError, match="rate_limit_burst must be at least 1"):
        AhaConfig(rate_limit_burst=0)


def test_non_positive_timeout_rejected():
    with pytest.raises(ValueError, match="timeout must be positive"):
        AhaConfig(read_timeout=0)


def test_non_positive_ttl_is_allowed():
    # A non-positive TTL disables caching rather than failing startup
    assert AhaConfig(cache_ttl_seconds=0).cache_ttl_seconds == 0


def test_require_credentials():
    with pytest.raises(ConfigurationError, match="aha_domain, aha_api_token") as excinfo:
        AhaConfig().require_credentials()

    assert excinfo.value.code == "CONFIGURATION_ERROR"
    assert excinfo.value.details["missing"] == ["aha_domain", "aha_api_token"]

    AhaConfig(aha_domain="acme", aha_api_token="t").require_credentials()
    AhaConfig(base_url="http://localhost:8001/api/v1").require_credentials()


def test_from_env(monkeypatch):
    monkeypatch.setenv("AHA_DOMAIN", "acme")
    monkeypatch.setenv("CACHE_TTL_SECONDS", "120")
    monkeypatch.setenv("AHA_RATE_LIMIT_BURST", "10")

    config = AhaConfig.from_env()

    assert config.aha_domain == "acme"
    assert config.cache_ttl_seconds == 120.0
    assert config.rate_limit_burst == 10


def test_load_config_from_yaml(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump({
        "aha_domain": "yaml-domain",
        "cache_ttl_seconds": 30,
        "rate_limit_burst": 5,
    }))

    config = ConfigManager(config_file).load_config()

    assert config.aha_domain == "yaml-domain"
    assert config.cache_ttl_seconds == 30
    assert config.rate_limit_burst == 5


def test_load_config_missing_file_uses_defaults(tmp_path):
    config = ConfigManager(tmp_path / "missing.yaml").load_config()

    assert config == AhaConfig()


def test_override_precedence(tmp_path, monkeypatch):
    """CLI > ENV > YAML > defaults."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump({
        "aha_domain": "yaml-domain",
        "cache_ttl_seconds": 30,
        "log_level": "WARNING",
    }))
    monkeypatch.setenv("CACHE_TTL_SECONDS", "90")
    monkeypatch.setenv("AHA_LOG_LEVEL", "ERROR")

    config = ConfigManager(config_file).load_config({"log_level": "DEBUG", "max_retries": None})

    assert config.aha_domain == "yaml-domain"
    assert config.cache_ttl_seconds == 90.0
    assert config.log_level == "DEBUG"
    assert config.max_retries == 3


def test_invalid_yaml_value_raises(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump({"rate_limit_refill_per_second": 0}))

    with pytest.raises(ValueError):
        ConfigManager(config_file).load_config()


def test_config_property_loads_lazily(tmp_path):
    manager = ConfigManager(tmp_path / "missing.yaml")

    assert manager.config.rate_limit_burst == 20
    assert manager.config is manager.config


def test_env_value_equal_to_default_still_overrides_yaml(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump({"rate_limit_burst": 40, "cache_ttl_seconds": 30}))
    monkeypatch.setenv("AHA_RATE_LIMIT_BURST", "20")

    config = ConfigManager(config_file).load_config()

    assert config.rate_limit_burst == 20
    # Unset variables leave the YAML value alone
    assert config.cache_ttl_seconds == 30


def test_env_overrides_only_reports_set_variables(monkeypatch):
    monkeypatch.setenv("AHA_READ_TIMEOUT", "8")

    assert AhaConfig.env_overrides() == {"read_timeout": 8.0}
