"""Configuration management for the upstream client."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from aha_smt.fetcher.errors import ConfigurationError


class AhaConfig(BaseModel):
    """Upstream client configuration: credentials, cache, rate limits, retries."""

    # Upstream account
    aha_domain: str = Field(default="", description="Aha! subdomain, e.g. 'acme' for acme.aha.io")
    aha_api_token: str = Field(default="", description="Aha! API bearer token")
    base_url: Optional[str] = Field(
        default=None,
        description="Override for the REST base URL (mock server, proxies)",
    )

    # Cache configuration
    cache_ttl_seconds: float = Field(default=60.0, description="Default TTL for cached GET responses")
    cache_stale_multiplier: float = Field(
        default=5.0,
        description="Stale data is retained for TTL times this factor",
    )

    # Rate limiting configuration
    rate_limit_burst: int = Field(default=20, description="Burst bucket capacity")
    rate_limit_refill_per_second: float = Field(default=20.0, description="Burst bucket refill rate")
    rate_limit_sustained: int = Field(default=300, description="Sustained bucket capacity (0 disables)")
    rate_limit_sustained_per_second: float = Field(
        default=5.0,
        description="Sustained bucket refill rate (300 per minute)",
    )

    # Retry configuration
    max_retries: int = Field(default=3, description="Maximum retry attempts per request")
    retry_base_delay: float = Field(default=0.5, description="Base delay for exponential backoff")
    retry_max_delay: float = Field(default=4.0, description="Maximum retry delay")
    retry_jitter_max: float = Field(default=0.5, description="Maximum jitter for retry delay")
    retryable_status_codes: List[int] = Field(
        default=[429, 502, 503, 504],
        description="HTTP status codes that trigger retries"
    )

    # Timeout configuration
    connect_timeout: float = Field(default=3.0, description="HTTP connect timeout in seconds")
    read_timeout: float = Field(default=8.0, description="HTTP read timeout in seconds")

    # Logging configuration
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator('rate_limit_burst')
    @classmethod
    def validate_burst(cls, v: int) -> int:
        """Validate burst capacity allows at least one call."""
        if v < 1:
            raise ValueError(f"rate_limit_burst must be at least 1, got: {v}")
        return v

    @field_validator('rate_limit_refill_per_second', 'rate_limit_sustained_per_second')
    @classmethod
    def validate_refill_rate(cls, v: float) -> float:
        """Validate refill rates are positive."""
        if v <= 0:
            raise ValueError(f"refill rate must be positive, got: {v}")
        return v

    @field_validator('rate_limit_sustained', 'max_retries')
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"value must not be negative, got: {v}")
        return v

    @field_validator('cache_stale_multiplier')
    @classmethod
    def validate_stale_multiplier(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError(f"cache_stale_multiplier must be >= 1, got: {v}")
        return v

    @field_validator('connect_timeout', 'read_timeout')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError(f"timeout must be positive, got: {v}")
        return v

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate URL format."""
        if v is not None and not v.startswith(('http://', 'https://')):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v

    @property
    def api_base_url(self) -> str:
        """REST v1 base URL."""
        if self.base_url:
            return self.base_url.rstrip("/")
        return f"https://{self.aha_domain}.aha.io/api/v1"

    @property
    def graphql_url(self) -> str:
        """GraphQL v2 endpoint."""
        if self.base_url:
            return self.base_url.rstrip("/").rsplit("/api/", 1)[0] + "/api/v2/graphql"
        return f"https://{self.aha_domain}.aha.io/api/v2/graphql"

    # Environment variable overrides
    @classmethod
    def from_env(cls) -> "AhaConfig":
        """Create configuration with environment variable overrides."""
        return cls(**cls.env_overrides())

    @classmethod
    def env_overrides(cls) -> Dict[str, Any]:
        """Field values for the environment variables that are actually set."""
        # Map environment variables to config fields
        env_mappings = {
            "AHA_DOMAIN": "aha_domain",
            "AHA_API_TOKEN": "aha_api_token",
            "AHA_BASE_URL": "base_url",
            "CACHE_TTL_SECONDS": "cache_ttl_seconds",
            "AHA_RATE_LIMIT_BURST": "rate_limit_burst",
            "AHA_RATE_LIMIT_RPS": "rate_limit_refill_per_second",
            "AHA_LOG_LEVEL": "log_level",
            "AHA_CONNECT_TIMEOUT": "connect_timeout",
            "AHA_READ_TIMEOUT": "read_timeout",
        }

        values = {}
        for env_var, field_name in env_mappings.items():
            if env_var in os.environ:
                value = os.environ[env_var]
                # Convert to appropriate type based on field type
                field_info = cls.model_fields[field_name]
                if field_info.annotation == int:
                    values[field_name] = int(value)
                elif field_info.annotation == float:
                    values[field_name] = float(value)
                else:
                    values[field_name] = value

        return values

    def require_credentials(self) -> None:
        """Raise if the upstream account is not configured."""
        if self.base_url:
            return
        missing = [
            name for name in ("aha_domain", "aha_api_token")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                {"missing": missing},
            )


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else Path("config/aha-smt.yaml")
        self._config: Optional[AhaConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> AhaConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged AhaConfig instance

        Raises:
            ValueError: If configuration validation fails
        """
        config_dict = {}

        # Load from YAML file if it exists
        if self.config_file.exists():
            with open(self.config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        # Create base config from YAML + defaults
        base_config = AhaConfig(**config_dict)

        # Merge configurations (ENV overrides YAML); only variables that are set count
        merged_dict = base_config.model_dump()
        merged_dict.update(AhaConfig.env_overrides())

        # Apply CLI overrides (highest precedence)
        if cli_overrides:
            cli_overrides = {k: v for k, v in cli_overrides.items() if v is not None}
            merged_dict.update(cli_overrides)

        self._config = AhaConfig(**merged_dict)
        return self._config

    @property
    def config(self) -> AhaConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config
