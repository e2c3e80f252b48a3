"""
Configuration Registry Module
=============================

Loads pipeline settings from a YAML file: catalog providers (in priority
order), their rate limits, confidence thresholds, matching floors and job
tracker timings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from shelf_agent.core.enums import ShelfKind, normalize_kind

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class RateLimitConfig:
    """Rate limiting configuration for a provider."""

    requests_per_second: float = 4.0
    concurrency: int = 4

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RateLimitConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            requests_per_second=float(data.get("requests_per_second", 4.0)),
            concurrency=int(data.get("concurrency", 4)),
        )


@dataclass
class ProviderConfig:
    """Configuration for a single catalog provider."""

    name: str
    adapter: str
    enabled: bool = True
    description: str = ""
    shelf_types: list[str] = field(default_factory=list)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    max_retries: int = 2
    timeout: float = 15.0
    env_disable_key: str | None = None
    custom_config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        default_rate_limit: RateLimitConfig | None = None,
        default_max_retries: int = 2,
        default_timeout: float = 15.0,
    ) -> ProviderConfig:
        """Create from dictionary."""
        rate_limit_data = data.get("rate_limit")
        if rate_limit_data:
            rate_limit = RateLimitConfig.from_dict(rate_limit_data)
        elif default_rate_limit:
            rate_limit = default_rate_limit
        else:
            rate_limit = RateLimitConfig()

        return cls(
            name=data["name"],
            adapter=data.get("adapter", data["name"]),
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            shelf_types=list(data.get("shelf_types", [])),
            rate_limit=rate_limit,
            max_retries=int(data.get("max_retries", default_max_retries)),
            timeout=float(data.get("timeout", default_timeout)),
            env_disable_key=data.get("env_disable_key"),
            custom_config=data.get("custom_config", {}),
        )

    @property
    def kinds(self) -> set[ShelfKind]:
        """Canonical kinds this provider owns."""
        return {normalize_kind(t) for t in self.shelf_types}

    def is_disabled_by_env(self) -> bool:
        """Check the provider's kill-switch environment variable."""
        if not self.env_disable_key:
            return False
        return os.environ.get(self.env_disable_key, "").strip().lower() in _TRUTHY


@dataclass
class ConfidenceConfig:
    """Tier thresholds for the confidence router."""

    max_threshold: float = 0.92
    min_threshold: float = 0.85

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_threshold <= self.max_threshold <= 1.0:
            raise ValueError(
                f"Confidence thresholds must satisfy 0 <= min <= max <= 1 "
                f"(got min={self.min_threshold}, max={self.max_threshold})"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ConfidenceConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        thresholds = data.get("thresholds", {})
        return cls(
            max_threshold=float(thresholds.get("max", 0.92)),
            min_threshold=float(thresholds.get("min", 0.85)),
        )


@dataclass
class MatchingConfig:
    """Similarity floors for record matching."""

    search_threshold: float = 0.5
    auto_match_threshold: float = 0.8
    suggestion_limit: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MatchingConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            search_threshold=float(data.get("search_threshold", 0.5)),
            auto_match_threshold=float(data.get("auto_match_threshold", 0.8)),
            suggestion_limit=int(data.get("suggestion_limit", 5)),
        )


@dataclass
class JobConfig:
    """Job tracker timings."""

    ttl_seconds: float = 300.0
    sweep_interval_seconds: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> JobConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            ttl_seconds=float(data.get("ttl_seconds", 300)),
            sweep_interval_seconds=float(data.get("sweep_interval_seconds", 30)),
        )


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = "ShelfAgent/0.1"
    request_timeout: float = 15.0
    max_retries: int = 2

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(data.get("default_rate_limit")),
            user_agent=data.get("user_agent", "ShelfAgent/0.1"),
            request_timeout=float(data.get("request_timeout", 15)),
            max_retries=int(data.get("max_retries", 2)),
        )


class SettingsRegistry:
    """
    Registry for pipeline configuration.

    Loads provider definitions and tuning knobs from a YAML file and
    provides methods to query them. Provider order in the file is the
    catalog chain's priority order.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ProviderConfig] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._confidence: ConfidenceConfig = ConfidenceConfig()
        self._matching: MatchingConfig = MatchingConfig()
        self._jobs: JobConfig = JobConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    @property
    def confidence(self) -> ConfidenceConfig:
        """Get confidence routing thresholds."""
        return self._confidence

    @property
    def matching(self) -> MatchingConfig:
        """Get matching configuration."""
        return self._matching

    @property
    def jobs(self) -> JobConfig:
        """Get job tracker configuration."""
        return self._jobs

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the shelf_agent.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self.load_dict(data)

    def load_dict(self, data: dict[str, Any]) -> None:
        """Load configuration from an already parsed mapping."""
        self._global_config = GlobalConfig.from_dict(data.get("global"))
        self._confidence = ConfidenceConfig.from_dict(data.get("confidence"))
        self._matching = MatchingConfig.from_dict(data.get("matching"))
        self._jobs = JobConfig.from_dict(data.get("jobs"))

        self._providers.clear()
        for provider_data in data.get("providers", []):
            provider = ProviderConfig.from_dict(
                provider_data,
                default_rate_limit=self._global_config.default_rate_limit,
                default_max_retries=self._global_config.max_retries,
                default_timeout=self._global_config.request_timeout,
            )
            self._providers[provider.name] = provider

    def get_provider(self, name: str) -> ProviderConfig | None:
        """
        Get a provider configuration by name.

        Args:
            name: Provider name

        Returns:
            ProviderConfig if found, None otherwise
        """
        return self._providers.get(name)

    def list_providers(self) -> list[ProviderConfig]:
        """All registered providers, in priority order."""
        return list(self._providers.values())

    def list_enabled_providers(self) -> list[ProviderConfig]:
        """
        Providers that are enabled and not switched off by environment.

        Returns:
            Enabled provider configurations in priority order
        """
        return [
            p for p in self._providers.values() if p.enabled and not p.is_disabled_by_env()
        ]


# Global registry instance
_default_registry: SettingsRegistry | None = None


def get_default_registry() -> SettingsRegistry:
    """
    Get the default settings registry instance.

    Loads configuration from the path specified in SHELF_AGENT_CONFIG_PATH
    environment variable, or falls back to config/shelf_agent.yaml.

    Returns:
        The global SettingsRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = SettingsRegistry()

        config_path = os.environ.get("SHELF_AGENT_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            module_dir = Path(__file__).parent
            project_root = module_dir.parent.parent
            path = project_root / "config" / "shelf_agent.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
