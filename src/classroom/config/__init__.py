"""Configuration package for the classroom platform."""

from classroom.config.app_config import (
    AppConfig,
    BackendConfig,
    GenerationConfig,
    ProviderConfig,
    clear_config_cache,
    get_data_dir,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "BackendConfig",
    "GenerationConfig",
    "ProviderConfig",
    "clear_config_cache",
    "get_data_dir",
    "get_provider_config",
    "load_app_config",
]
