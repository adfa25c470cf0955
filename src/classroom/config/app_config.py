"""Application configuration loader.

Loads centralized configuration from data/config/app_config_v1.yaml
with fallback to built-in defaults.

Usage:
    from classroom.config.app_config import load_app_config, get_provider_config

    config = load_app_config()
    provider = get_provider_config("lmstudio")
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/app_config_v1.yaml")

DATA_DIR_ENV = "CLASSROOM_DATA_DIR"
API_URL_ENV = "CLASSROOM_API_URL"


@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class BackendConfig:
    """Where the HTTP client finds the classroom API."""

    base_url: str = "http://localhost:8000"
    api_key_env: str | None = "CLASSROOM_API_KEY"
    timeout: float = 30.0

    def get_api_key(self) -> str | None:
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class GenerationConfig:
    """Defaults for content generation and document processing."""

    default_provider: str = "lmstudio"
    concurrency: int = 4
    poll_interval_seconds: float = 5.0
    max_tokens_per_chunk: int = 1000
    overlap_tokens: int = 50


@dataclass
class AppConfig:
    """Application-wide configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    backend: BackendConfig = field(default_factory=BackendConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    paths: dict[str, str] = field(default_factory=dict)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "providers": {
            "lmstudio": {
                "base_url": "http://localhost:1234/v1",
                "default_model": "llama-3.2-3b-instruct",
                "api_key_env": None,
            },
            "openai": {
                "base_url": None,
                "default_model": "gpt-4o-mini",
                "api_key_env": "OPENAI_API_KEY",
            },
            "anthropic": {
                "base_url": None,
                "default_model": "claude-sonnet-4-20250514",
                "api_key_env": "ANTHROPIC_API_KEY",
            },
        },
        "backend": {
            "base_url": "http://localhost:8000",
            "api_key_env": "CLASSROOM_API_KEY",
            "timeout": 30.0,
        },
        "generation": {
            "default_provider": "lmstudio",
            "concurrency": 4,
            "poll_interval_seconds": 5.0,
            "max_tokens_per_chunk": 1000,
            "overlap_tokens": 50,
        },
        "paths": {
            "data_dir": "data",
            "db_path": "db/classroom.db",
            "storage_dir": "data/storage",
        },
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    providers = {}
    for name, pconfig in data.get("providers", defaults["providers"]).items():
        providers[name] = ProviderConfig(
            base_url=pconfig.get("base_url"),
            default_model=pconfig.get("default_model", "default"),
            api_key_env=pconfig.get("api_key_env"),
        )

    backend_data = {**defaults["backend"], **data.get("backend", {})}
    backend = BackendConfig(
        base_url=os.environ.get(API_URL_ENV, backend_data["base_url"]),
        api_key_env=backend_data.get("api_key_env"),
        timeout=float(backend_data.get("timeout", 30.0)),
    )

    gen_data = {**defaults["generation"], **data.get("generation", {})}
    generation = GenerationConfig(
        default_provider=gen_data["default_provider"],
        concurrency=int(gen_data["concurrency"]),
        poll_interval_seconds=float(gen_data["poll_interval_seconds"]),
        max_tokens_per_chunk=int(gen_data["max_tokens_per_chunk"]),
        overlap_tokens=int(gen_data["overlap_tokens"]),
    )

    paths = {**defaults["paths"], **data.get("paths", {})}

    return AppConfig(
        providers=providers,
        backend=backend,
        generation=generation,
        paths=paths,
    )


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    data: dict[str, Any]

    if CONFIG_FILE.exists():
        logger.debug("loading_app_config", source=str(CONFIG_FILE))
        data = yaml.safe_load(CONFIG_FILE.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    _cached_config = _parse_config(data)
    return _cached_config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a specific provider.

    Args:
        provider: Provider name (e.g., "lmstudio", "openai")

    Returns:
        ProviderConfig or None if provider not found.
    """
    config = load_app_config()
    return config.providers.get(provider)


def get_data_dir() -> Path:
    """Resolve the data directory (env var wins over config)."""
    env_dir = os.environ.get(DATA_DIR_ENV)
    if env_dir:
        return Path(env_dir)
    return Path(load_app_config().paths.get("data_dir", "data"))


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
